# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Status Channel - Publishes restore progress on the target.

Other processes on the appliance (health checks, automation) read the
status file without synchronization. This orchestrator is its only writer,
and within one run the value only moves forward:

    restoring -> failed | complete
"""

from typing import List

import structlog

from gherestore.config import RestoreStatus
from gherestore.exceptions import InvalidStatusTransition
from gherestore.target.remote import ControlChannel, Op, RemoteOperation, run_checked

logger = structlog.get_logger()

_TRANSITIONS = {
    None: {RestoreStatus.RESTORING},
    RestoreStatus.RESTORING: {RestoreStatus.FAILED, RestoreStatus.COMPLETE},
    RestoreStatus.FAILED: set(),
    RestoreStatus.COMPLETE: set(),
}


class StatusChannel:
    """Single writer of the remote restore status file."""

    def __init__(self, channel: ControlChannel, cluster: bool):
        self.channel = channel
        self.cluster = cluster
        self.current: RestoreStatus | None = None
        self.history: List[RestoreStatus] = []

    @property
    def terminal(self) -> bool:
        return self.current in (RestoreStatus.FAILED, RestoreStatus.COMPLETE)

    async def set(self, state: RestoreStatus) -> None:
        """
        Write a new status value.

        Cluster targets receive the value on every node, since any node
        may be asked for health.

        Raises:
            InvalidStatusTransition: If the transition would move backwards
            RemoteOperationError: If the write fails
        """
        if state not in _TRANSITIONS[self.current]:
            raise InvalidStatusTransition(
                f"Cannot change restore status from {self.current} to {state.value}",
                details={"history": [s.value for s in self.history]},
            )

        await run_checked(
            self.channel,
            RemoteOperation(Op.WRITE_STATUS, {"state": state.value}, fan_out=self.cluster),
        )

        self.current = state
        self.history.append(state)
        logger.info("restore_status_changed", status=state.value, cluster=self.cluster)
