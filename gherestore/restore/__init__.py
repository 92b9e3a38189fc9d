# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Pipeline - Strategy, gate, plan and execution.
"""

from gherestore.restore.executor import PlanExecutor, StepResult
from gherestore.restore.gate import check_actions_feature, run_compatibility_gate
from gherestore.restore.movers import CommandMover, DataMover, MoverRequest
from gherestore.restore.plan import PlanError, RestorePlan, RestoreStep
from gherestore.restore.steps import RestoreContext, build_plan, new_run_state
from gherestore.restore.strategy import StrategyDecision, resolve_strategy

__all__ = [
    # Strategy and gate
    "StrategyDecision",
    "resolve_strategy",
    "run_compatibility_gate",
    "check_actions_feature",
    # Plan
    "PlanError",
    "RestorePlan",
    "RestoreStep",
    "RestoreContext",
    "build_plan",
    "new_run_state",
    # Execution
    "PlanExecutor",
    "StepResult",
    "CommandMover",
    "DataMover",
    "MoverRequest",
]
