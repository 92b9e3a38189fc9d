# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Plan - Declarative step list with dependency edges.

Ordering is carried by each step's ``after`` edges, not by list position.
Steps that do not apply to an invocation are removed from the plan, and
their dependents inherit their dependencies so that ordering stays
transitive.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Tuple

StepAction = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class RestoreStep:
    """
    A named unit of restore work.

    Attributes:
        name: Unique step name
        description: Progress line printed when the step starts
        action: Coroutine function receiving the restore context
        after: Names of steps that must finish first
        concurrent: Member of the parallel data-mover region
        soft: Failure is logged as a warning and does not fail the run
        retryable: Overwrite semantics; safe to re-run on a second invocation
    """

    name: str
    description: str
    action: StepAction
    after: FrozenSet[str] = field(default_factory=frozenset)
    concurrent: bool = False
    soft: bool = False
    retryable: bool = True


class PlanError(ValueError):
    """Raised when the step graph is malformed."""


@dataclass(frozen=True)
class RestorePlan:
    """Immutable set of steps for one invocation."""

    steps: Tuple[RestoreStep, ...]

    def __post_init__(self) -> None:
        names = [step.name for step in self.steps]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise PlanError(f"Duplicate step names: {duplicates}")

        known = set(names)
        for step in self.steps:
            unknown = step.after - known
            if unknown:
                raise PlanError(f"Step {step.name!r} depends on unknown steps {sorted(unknown)}")

    @property
    def names(self) -> List[str]:
        return [step.name for step in self.steps]

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self.steps)

    def get(self, name: str) -> RestoreStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    def without(self, names: Iterable[str]) -> "RestorePlan":
        """
        Remove steps, re-attaching their dependents to their own dependencies.
        """
        removed = set(names)
        edges: Dict[str, FrozenSet[str]] = {step.name: step.after for step in self.steps}

        def inherited(deps: FrozenSet[str], seen: FrozenSet[str]) -> FrozenSet[str]:
            result: set = set()
            for dep in deps:
                if dep not in removed:
                    result.add(dep)
                elif dep not in seen:
                    result |= inherited(edges.get(dep, frozenset()), seen | {dep})
            return frozenset(result)

        kept = tuple(
            replace(step, after=inherited(step.after, frozenset()))
            for step in self.steps
            if step.name not in removed
        )
        return RestorePlan(kept)

    def order(self) -> List[RestoreStep]:
        """
        Topologically sort the steps.

        Ties are broken by declaration order, so the result is deterministic.

        Raises:
            PlanError: If the dependency graph has a cycle
        """
        pending = list(self.steps)
        done: set = set()
        ordered: List[RestoreStep] = []

        while pending:
            ready = next((s for s in pending if s.after <= done), None)
            if ready is None:
                raise PlanError(
                    f"Dependency cycle between steps {sorted(s.name for s in pending)}"
                )
            pending.remove(ready)
            done.add(ready.name)
            ordered.append(ready)

        return ordered

    def stages(self) -> List[List[RestoreStep]]:
        """
        Group the ordered steps into execution stages.

        Consecutive concurrent steps form one stage (the parallel region);
        every other step is a stage of its own.
        """
        stages: List[List[RestoreStep]] = []
        for step in self.order():
            if step.concurrent and stages and stages[-1][0].concurrent:
                stages[-1].append(step)
            else:
                stages.append([step])
        return stages
