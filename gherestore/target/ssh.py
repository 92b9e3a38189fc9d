# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SSH Control Channel - Runs remote operations on the target over ssh.

Connections are multiplexed through a control master so the many short
operations of a restore reuse one authenticated session.
"""

import asyncio
import shlex
import shutil
import tempfile
from pathlib import Path
from typing import List

import structlog

from gherestore.config import RestoreConfig
from gherestore.exceptions import ConnectivityFailure
from gherestore.target.handlers import RemotePaths, render
from gherestore.target.remote import RemoteOperation, RemoteResult

logger = structlog.get_logger()

# ssh reserves exit status 255 for its own errors
SSH_CONNECTION_ERROR = 255


class SSHControlChannel:
    """ControlChannel implementation backed by the ssh client."""

    def __init__(self, config: RestoreConfig, control_dir: Path | None = None):
        self.config = config
        self.paths = RemotePaths.from_config(config)
        self._owns_control_dir = control_dir is None
        self._control_dir = control_dir or Path(tempfile.mkdtemp(prefix="ghe-ssh-"))
        self._control_path = self._control_dir / f"{config.host}-{config.port}"

    def ssh_argv(self, remote_command: str, *control: str) -> List[str]:
        return [
            "ssh",
            "-p", str(self.config.port),
            "-l", self.config.ssh_user,
            "-o", "BatchMode=yes",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={self._control_path}",
            "-o", "ControlPersist=10m",
            *self.config.extra_ssh_options,
            *control,
            self.config.host,
            "--",
            remote_command,
        ]

    def remote_command(self, op: RemoteOperation) -> str:
        command = shlex.join(render(op, self.paths))
        if op.fan_out:
            command = shlex.join(["ghe-cluster-each", "--", command])
        return command

    async def run(self, op: RemoteOperation) -> RemoteResult:
        """
        Run an operation on the target.

        Raises:
            ConnectivityFailure: If ssh itself fails (exit 255)
        """
        command = self.remote_command(op)
        argv = self.ssh_argv(command)
        logger.debug("remote_operation", operation=op.name.value, command=command)

        stdin_file = open(op.stdin, "rb") if op.stdin is not None else None
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin_file or asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except FileNotFoundError as e:
            raise ConnectivityFailure(
                f"Unable to run ssh: {e}",
                details={"host": self.config.host},
            )
        finally:
            if stdin_file is not None:
                stdin_file.close()

        result = RemoteResult(
            returncode=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

        if result.returncode == SSH_CONNECTION_ERROR:
            raise ConnectivityFailure(
                f"Unable to connect to {self.config.host}:{self.config.port}",
                details={"operation": op.name.value, "stderr": result.stderr.strip()},
            )

        return result

    async def close(self) -> None:
        """Shut down the multiplexed master and remove its socket directory."""
        if self._control_path.exists():
            proc = await asyncio.create_subprocess_exec(
                *self.ssh_argv("true", "-O", "exit"),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
            logger.debug("ssh_master_closed", host=self.config.host)

        if self._owns_control_dir:
            shutil.rmtree(self._control_dir, ignore_errors=True)
