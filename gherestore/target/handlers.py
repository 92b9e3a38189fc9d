# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote Handlers - Fixed table translating operations into appliance commands.

Only operations registered here can run on the target. Arguments are
validated before rendering, and every command is an argv list that the
channel quotes as a whole; no caller-supplied shell text reaches the target.
"""

import re
import shlex
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

from gherestore.config import RestoreConfig, RestoreStatus
from gherestore.target.remote import Op, RemoteOperation

MARKERS = ("configured", "cluster", "repl-state")
CONFIG_KEYS = (
    "app.actions.enabled",
    "app.minio.enabled",
    "mysql.external.enabled",
    "mysql.backup.binary",
)
SERVICES = ("cron", "github-timerd", "memcached")
SERVICE_ACTIONS = ("start", "stop", "restart")
REMOTE_SENTINELS = ("es-scan-complete",)
CONNECT_JOB_KEYS = ("github-connect:jobs:license_usage_sync",)
GIT_DAEMON_USER = "babeld"

_UUID_RE = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(frozen=True)
class RemotePaths:
    """Remote filesystem layout (overridable for test appliances)."""

    root_dir: str = ""
    data_user_dir: str = "/data/user"

    @classmethod
    def from_config(cls, config: RestoreConfig) -> "RemotePaths":
        return cls(config.remote_root_dir, config.remote_data_user_dir)

    def marker(self, name: str) -> str:
        return f"{self.root_dir}/etc/github/{name}"

    def common(self, name: str = "") -> str:
        base = f"{self.data_user_dir}/common"
        return f"{base}/{name}" if name else base

    @property
    def status_file(self) -> str:
        return self.common("ghe-restore-status")

    @property
    def release_file(self) -> str:
        return f"{self.root_dir}/etc/github/enterprise-release"


Renderer = Callable[[Mapping[str, Any], RemotePaths], List[str]]

HANDLERS: Dict[Op, Renderer] = {}


def handler(op: Op) -> Callable[[Renderer], Renderer]:
    """Register the renderer for an operation."""

    def register(func: Renderer) -> Renderer:
        HANDLERS[op] = func
        return func

    return register


def _choice(args: Mapping[str, Any], key: str, allowed: tuple) -> str:
    value = args.get(key)
    if value not in allowed:
        raise ValueError(f"{key} must be one of {allowed}, got {value!r}")
    return value


def _uuid(args: Mapping[str, Any]) -> str:
    value = str(args.get("uuid", ""))
    if not _UUID_RE.match(value):
        raise ValueError(f"Invalid node uuid: {value!r}")
    return value


def _shell(script: str) -> List[str]:
    return ["/bin/sh", "-c", script]


def render(op: RemoteOperation, paths: RemotePaths) -> List[str]:
    """
    Render an operation into the argv that runs on the target.

    Raises:
        ValueError: If the operation is unknown or its arguments are invalid
    """
    renderer = HANDLERS.get(op.name)
    if renderer is None:
        raise ValueError(f"No handler registered for {op.name!r}")
    return renderer(op.args, paths)


# ============================================================================
# Probing
# ============================================================================

@handler(Op.READ_VERSION)
def _read_version(args, paths):
    return ["cat", paths.release_file]


@handler(Op.MARKER_EXISTS)
def _marker_exists(args, paths):
    return ["test", "-f", paths.marker(_choice(args, "marker", MARKERS))]


@handler(Op.CONFIG_ENABLED)
def _config_enabled(args, paths):
    return ["ghe-config", "--true", _choice(args, "key", CONFIG_KEYS)]


@handler(Op.MAINTENANCE_STATUS)
def _maintenance_status(args, paths):
    return ["ghe-maintenance", "-q"]


# ============================================================================
# Status and bookkeeping
# ============================================================================

@handler(Op.WRITE_STATUS)
def _write_status(args, paths):
    state = RestoreStatus(args.get("state")).value
    # sponge soaks stdin before replacing the file
    return _shell(f"echo {state} | sudo sponge {shlex.quote(paths.status_file)} >/dev/null")


@handler(Op.SYSLOG)
def _syslog(args, paths):
    return ["logger", "-t", "backup-utils", str(args.get("message", ""))]


# ============================================================================
# Services
# ============================================================================

@handler(Op.SERVICE)
def _service(args, paths):
    service = _choice(args, "service", SERVICES)
    action = _choice(args, "action", SERVICE_ACTIONS)
    return ["sudo", "timeout", "120s", "systemctl", action, service]


@handler(Op.ENSURE_DATABASE_SERVICES)
def _ensure_database_services(args, paths):
    return _shell("sudo ghe-service-ensure-mysql && sudo ghe-service-ensure-elasticsearch")


@handler(Op.ACTIONS_STOP)
def _actions_stop(args, paths):
    return ["ghe-actions-stop"]


@handler(Op.ACTIONS_START)
def _actions_start(args, paths):
    return ["ghe-actions-start"]


# ============================================================================
# Identity and data imports
# ============================================================================

@handler(Op.WRITE_UUID)
def _write_uuid(args, paths):
    return ["sudo", "sponge", paths.common("uuid")]


@handler(Op.RESET_CONSENSUS_STATE)
def _reset_consensus_state(args, paths):
    return _shell(
        f"sudo systemctl stop consul || true; sudo rm -rf {shlex.quote(paths.data_user_dir + '/consul/raft')}"
    )


@handler(Op.TOUCH_SENTINEL)
def _touch_sentinel(args, paths):
    return ["sudo", "touch", paths.common(_choice(args, "name", REMOTE_SENTINELS))]


@handler(Op.IMPORT_REDIS)
def _import_redis(args, paths):
    return ["ghe-import-redis"]


@handler(Op.IMPORT_AUTHORIZED_KEYS)
def _import_authorized_keys(args, paths):
    return ["ghe-import-authorized-keys"]


# ============================================================================
# Configuration run
# ============================================================================

@handler(Op.PAUSE_CONNECT_JOBS)
def _pause_connect_jobs(args, paths):
    timestamp = int(args["timestamp"])
    commands = [
        f"ghe-redis-cli hset '{key}' last_run_at {timestamp} >/dev/null"
        for key in CONNECT_JOB_KEYS
    ]
    return _shell(" && ".join(commands))


@handler(Op.NOMAD_CLEANUP)
def _nomad_cleanup(args, paths):
    legacy = bool(args.get("legacy"))
    if legacy:
        return ["/usr/local/share/enterprise/ghe-nomad-cleanup"]
    if args.get("cluster"):
        return ["ghe-cluster-nomad-cleanup"]
    return ["ghe-nomad-cleanup"]


@handler(Op.CONFIG_APPLY)
def _config_apply(args, paths):
    return ["ghe-cluster-config-apply"] if args.get("cluster") else ["ghe-config-apply"]


@handler(Op.RESET_CONNECT)
def _reset_connect(args, paths):
    script = "/usr/local/share/enterprise/ghe-reset-gh-connect"
    return _shell(f"if [ -f {script} ]; then {script} -y; fi")


# ============================================================================
# Stale replica teardown
# ============================================================================

@handler(Op.LIST_GIT_SERVERS)
def _list_git_servers(args, paths):
    return ["ghe-spokes", "server", "show", "--json"]


@handler(Op.EVACUATE_GIT_SERVER)
def _evacuate_git_server(args, paths):
    return ["ghe-spokes", "server", "evacuate", f"git-server-{_uuid(args)}", "Removing replica"]


@handler(Op.DESTROY_STORAGE_HOST)
def _destroy_storage_host(args, paths):
    return ["ghe-storage", "destroy-host", f"storage-server-{_uuid(args)}", "--force"]


@handler(Op.PAGES_OFFLINE)
def _pages_offline(args, paths):
    return ["ghe-dpages", "offline", f"pages-server-{_uuid(args)}"]


@handler(Op.PAGES_REMOVE)
def _pages_remove(args, paths):
    return ["ghe-dpages", "remove", f"pages-server-{_uuid(args)}"]


@handler(Op.PURGE_JOB_QUEUE)
def _purge_job_queue(args, paths):
    return ["ghe-redis-cli", "del", f"resque:queue:maint_git-server-{_uuid(args)}"]


# ============================================================================
# Host keys
# ============================================================================

@handler(Op.IMPORT_SSH_HOST_KEYS)
def _import_ssh_host_keys(args, paths):
    return ["ghe-import-ssh-host-keys"]


@handler(Op.EXTRACT_HOST_KEYS)
def _extract_host_keys(args, paths):
    return ["sudo", "tar", "-xpf", "-", "-C", paths.common()]


@handler(Op.CHOWN_HOST_KEYS)
def _chown_host_keys(args, paths):
    owner = f"{GIT_DAEMON_USER}:{GIT_DAEMON_USER}"
    return _shell(f"sudo chown {owner} {shlex.quote(paths.common())}/ssh_host_*")


@handler(Op.CLUSTER_CONFIG_UPDATE)
def _cluster_config_update(args, paths):
    script = "/usr/local/share/enterprise/ghe-cluster-config-update"
    return _shell(f"if [ -f {script} ]; then {script} -s; else ghe-cluster-config-update -s; fi")
