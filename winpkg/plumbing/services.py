"""
Windows service management, via the Service Control Manager's `sc.exe` tool.

`sc.exe` exits with the Win32 error code of a failed call, which is used here to distinguish
expected outcomes (e.g. a service that doesn't exist) from genuine failures.
"""

from enum import Enum
import logging
import os.path
from subprocess import CalledProcessError
import time
from typing import Dict, NamedTuple, Optional

from .common import (Collect, command, CreationFailed, Credential, DeletionFailed, NotInstalled,
                     require_system, Result, State, Unset, WINDOWS)
from . import files, windows


LOG = logging.getLogger(__name__)

SC = "sc.exe"

ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_NOT_ACTIVE = 1062

DEFAULT_ACL = ("D:(A;;CCLCSWRPWPDTLOCRRC;;;SY)(A;;CCDCLCSWRPWPDTLOCRSDRCWDWO;;;BA)"
               "(A;;CCLCSWLOCRRC;;;IU)(A;;CCLCSWLOCRRC;;;SU)")
"""
SDDL allowing SYSTEM and administrators to control a service, and interactive users to query it.
"""

BUILTIN_ACCOUNTS = ("LocalSystem", r"NT AUTHORITY\LocalService", r"NT AUTHORITY\NetworkService")

ENSURE_PASSES = 2
"""
Upper bound on delete-then-create passes made by `ensure_service`.
"""

STOP_POLL_INTERVAL = 1
STOP_POLL_ATTEMPTS = 30


class StartMode(Enum):
    """
    Service start type, as accepted by `sc.exe config start=`.
    """

    demand = "demand"
    auto = "auto"
    delayed_auto = "delayed-auto"
    disabled = "disabled"


class RestartPolicy(NamedTuple):
    """
    Recovery action taken by the Service Control Manager when a service fails.
    """

    reset_window: int = 86400
    """
    Seconds without failure after which the failure count is reset.
    """
    restart_delay: int = 5000
    """
    Milliseconds to wait before restarting a failed service.
    """


class ServiceRecord(NamedTuple):
    """
    Desired state of a single service.
    """

    name: str
    binary_path: str
    credential: Credential
    display_name: str
    restart_policy: RestartPolicy = RestartPolicy()
    start_mode: StartMode = StartMode.demand
    acl: str = DEFAULT_ACL
    host: Optional[str] = None
    """
    Service host executable to copy to `binary_path`, alongside a descriptor of the command to run.
    """
    executable: str = "java"
    arguments: str = ""

    @property
    def descriptor_path(self) -> str:
        return "{}.xml".format(os.path.splitext(self.binary_path)[0])


def _account(credential: Credential) -> str:
    # Local accounts must be qualified with the machine, written as `.\name`.
    name = credential.username
    if name in BUILTIN_ACCOUNTS or "\\" in name or "@" in name:
        return name
    return ".\\{}".format(name)


def _sc(*args, output: bool = True):
    return command([SC, *args], output=output)


def _parse_fields(raw: str) -> Dict[str, str]:
    fields = {}
    for line in raw.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() and not key.startswith("["):
            fields[key.strip()] = value.strip()
    return fields


@require_system(WINDOWS)
def exists(name: str) -> bool:
    """
    Test if a service is registered.  Failures to query are logged and treated as absence.
    """
    try:
        _sc("query", name)
    except CalledProcessError as ex:
        if ex.returncode != ERROR_SERVICE_DOES_NOT_EXIST:
            LOG.warning("Couldn't query service %r (exit code %s)", name, ex.returncode)
        return False
    except OSError as ex:
        LOG.warning("Couldn't query service %r: %s", name, ex)
        return False
    return True


@require_system(WINDOWS)
def get_state(name: str) -> str:
    """
    Look up the current state of a service, e.g. `RUNNING` or `STOPPED`.
    """
    raw = _sc("query", name).stdout.decode("utf-8", "replace")
    state = _parse_fields(raw).get("STATE", "")
    # Reported as a numeric code followed by its name, e.g. `4  RUNNING`.
    return state.split()[-1] if state else "UNKNOWN"


@require_system(WINDOWS)
def get_service(name: str) -> Dict[str, str]:
    """
    Fetch the registered configuration of a service, keyed by `sc.exe qc` field names, along with
    its failure actions and security descriptor.
    """
    fields = _parse_fields(_sc("qc", name).stdout.decode("utf-8", "replace"))
    failure = _parse_fields(_sc("qfailure", name).stdout.decode("utf-8", "replace"))
    fields.update(failure)
    fields["SDDL"] = _sc("sdshow", name).stdout.decode("utf-8", "replace").strip()
    return fields


@require_system(WINDOWS)
def create(record: ServiceRecord) -> Result[Unset]:
    """
    Register a new service to run the record's binary as its credential.
    """
    args = ["create", record.name, "binPath=", record.binary_path,
            "DisplayName=", record.display_name, "obj=", _account(record.credential)]
    if record.credential.password is not None:
        args += ["password=", record.credential.password]
    try:
        _sc(*args)
    except CalledProcessError as ex:
        raise CreationFailed("Couldn't create service {!r} (exit code {})"
                             .format(record.name, ex.returncode)) from ex
    LOG.debug("Created service: %r", record.name)
    return Result(State.created)


@require_system(WINDOWS)
def set_restart_policy(name: str, policy: RestartPolicy) -> Result[Unset]:
    """
    Restart a service automatically after it fails.
    """
    _sc("failure", name, "reset=", str(policy.reset_window),
        "actions=", "restart/{}".format(policy.restart_delay))
    return Result(State.success)


@require_system(WINDOWS)
def set_start_mode(name: str, mode: StartMode) -> Result[Unset]:
    _sc("config", name, "start=", mode.value)
    return Result(State.success)


@require_system(WINDOWS)
def set_acl(name: str, sddl: str) -> Result[Unset]:
    """
    Replace the security descriptor controlling who may start, stop or reconfigure a service.
    """
    _sc("sdset", name, sddl)
    return Result(State.success)


@require_system(WINDOWS)
def start(name: str) -> Result[Unset]:
    """
    Start a service, if not already running.
    """
    try:
        _sc("start", name)
    except CalledProcessError as ex:
        if ex.returncode == ERROR_SERVICE_ALREADY_RUNNING:
            return Result(State.unchanged)
        elif ex.returncode == ERROR_SERVICE_DOES_NOT_EXIST:
            raise NotInstalled("Service {!r} is not registered".format(name)) from ex
        raise
    LOG.debug("Started service: %r", name)
    return Result(State.success)


@require_system(WINDOWS)
def stop(name: str) -> Result[Unset]:
    """
    Stop a service, if it exists and is running.
    """
    if not exists(name):
        LOG.info("Service %r does not exist, nothing to stop", name)
        return Result(State.unchanged)
    try:
        _sc("stop", name)
    except CalledProcessError as ex:
        if ex.returncode == ERROR_SERVICE_NOT_ACTIVE:
            return Result(State.unchanged)
        raise
    LOG.debug("Stopped service: %r", name)
    return Result(State.success)


def _wait_for_stop(name: str) -> None:
    for _ in range(STOP_POLL_ATTEMPTS):
        if get_state(name) == "STOPPED":
            return
        time.sleep(STOP_POLL_INTERVAL)
    LOG.warning("Service %r still not stopped, deleting anyway", name)


@require_system(WINDOWS)
def delete(name: str) -> Result[Unset]:
    """
    Stop a service if it's running, then remove it.
    """
    if not exists(name):
        return Result(State.unchanged)
    try:
        if get_state(name) != "STOPPED":
            stop(name)
            _wait_for_stop(name)
        _sc("delete", name)
    except CalledProcessError as ex:
        raise DeletionFailed("Couldn't delete service {!r} (exit code {})"
                             .format(name, ex.returncode)) from ex
    LOG.debug("Deleted service: %r", name)
    return Result(State.success)


@Result.collect
def _build_service(record: ServiceRecord) -> Collect[None]:
    if record.host:
        yield files.stage_executable(record.host, record.binary_path)
        yield files.write_template(record.descriptor_path, "service.xml.j2",
                                   {"name": record.name,
                                    "display_name": record.display_name,
                                    "executable": record.executable,
                                    "arguments": record.arguments})
    yield windows.ensure_event_source(record.name)
    yield create(record)
    try:
        yield set_restart_policy(record.name, record.restart_policy)
        yield set_start_mode(record.name, record.start_mode)
        yield set_acl(record.name, record.acl)
    except CalledProcessError as ex:
        raise CreationFailed("Service {!r} was created but could not be configured, and needs to "
                             "be recreated (exit code {})".format(record.name, ex.returncode)) from ex


@Result.collect_value
def ensure_service(record: ServiceRecord) -> Collect[ServiceRecord]:
    """
    Create a service from scratch, replacing any existing service of the same name.

    Existing services are never modified in place: binaries and credentials are only ever set
    together, on a freshly created service.
    """
    for _ in range(ENSURE_PASSES):
        if not exists(record.name):
            yield _build_service(record)
            return record
        LOG.info("Replacing existing service %r", record.name)
        yield delete(record.name)
    raise CreationFailed("Service {!r} is still registered after being deleted".format(record.name))
