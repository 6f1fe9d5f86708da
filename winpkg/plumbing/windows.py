"""
Windows machine state: environment variables, folder permissions and event log sources.

Each of these is managed through the stock command line tools rather than the Win32 API, so that
no extensions are required to run the installer.
"""

import logging
import os
from subprocess import CalledProcessError
from typing import Optional

from .common import command, require_system, Result, State, WINDOWS


LOG = logging.getLogger(__name__)

ENVIRONMENT_KEY = r"HKLM\SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
EVENTLOG_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services\EventLog\{}\{}"

EVENT_MESSAGE_FILE = r"%SystemRoot%\System32\EventCreate.exe"

FULL_CONTROL = "(OI)(CI)F"
"""
`icacls` permissions granting full control, inherited by subfolders and files.
"""


def _reg_query(key: str, value: Optional[str] = None) -> Optional[str]:
    args = ["reg.exe", "query", key]
    if value:
        args += ["/v", value]
    try:
        proc = command(args, output=True)
    except CalledProcessError:
        return None
    return proc.stdout.decode("utf-8", "replace")


@require_system(WINDOWS)
def get_machine_variable(name: str) -> Optional[str]:
    """
    Read a machine-scope environment variable from the registry.
    """
    raw = _reg_query(ENVIRONMENT_KEY, name)
    if raw is None:
        return None
    for line in raw.splitlines():
        parts = line.strip().split(None, 2)
        if len(parts) >= 2 and parts[0].lower() == name.lower() and parts[1].startswith("REG_"):
            return parts[2] if len(parts) == 3 else ""
    return None


def get_variable(name: str) -> Optional[str]:
    """
    Read an environment variable, preferring the current process over the machine registry.
    """
    value = os.environ.get(name)
    if value is not None:
        return value
    return get_machine_variable(name)


@require_system(WINDOWS)
def set_machine_variable(name: str, value: str) -> Result[None]:
    """
    Set a machine-scope environment variable, and mirror it into the current process.
    """
    if get_machine_variable(name) == value:
        os.environ[name] = value
        return Result(State.unchanged)
    command(["setx.exe", name, value, "/M"], output=True)
    os.environ[name] = value
    LOG.debug("Set machine variable: %r = %r", name, value)
    return Result(State.success)


@require_system(WINDOWS)
def get_acl(path: str, principal: str) -> str:
    """
    Collect the `icacls` permission strings for a principal on a path, e.g. `(OI)(CI)(F)`.
    """
    raw = command(["icacls.exe", path], output=True).stdout.decode("utf-8", "replace")
    perms = []
    for line in raw.splitlines():
        # The first line is prefixed with the path itself.
        if line.startswith(path):
            line = line[len(path):]
        line = line.strip()
        if ":" not in line:
            continue
        who, grant = line.rsplit(":", 1)
        if who.lower() == principal.lower() or who.lower().endswith("\\" + principal.lower()):
            perms.append(grant)
    return "".join(perms)


def _normalise_perms(perms: str) -> str:
    # icacls reports simple rights in brackets, e.g. "F" is shown as "(F)".
    return "".join("({})".format(part) if part and not part.startswith("(") else part
                   for part in perms.replace(")", ")\0").split("\0"))


@require_system(WINDOWS)
def grant_acl(path: str, principal: str, perms: str = FULL_CONTROL) -> Result[None]:
    """
    Grant a principal permissions on a file or folder, if not already granted.
    """
    if _normalise_perms(perms) in get_acl(path, principal):
        return Result(State.unchanged)
    command(["icacls.exe", path, "/grant", "{}:{}".format(principal, perms)], output=True)
    LOG.debug("Granted %r to %r on %r", perms, principal, path)
    return Result(State.success)


@require_system(WINDOWS)
def ensure_event_source(name: str, log: str = "Application") -> Result[None]:
    """
    Register an event log source for a service, so that it can report to the event viewer.
    """
    key = EVENTLOG_KEY.format(log, name)
    if _reg_query(key) is not None:
        return Result(State.unchanged)
    command(["reg.exe", "add", key, "/v", "EventMessageFile", "/t", "REG_EXPAND_SZ",
             "/d", EVENT_MESSAGE_FILE, "/f"], output=True)
    LOG.debug("Registered event source: %r", name)
    return Result(State.created)
