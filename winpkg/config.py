"""
Installer settings, read from an INI file:

    [installer]
    packages = C:\\hdp\\resources
    service_host = C:\\hdp\\resources\\serviceHost.exe
    reset_window = 86400
    restart_delay = 5000
    start_mode = demand
    service_acl = D:(A;;GA;;;SY)(A;;GA;;;BA)

All keys are optional.  The file itself is optional too, in which case the defaults are used.
"""

import configparser
import logging
import os
from typing import NamedTuple, Optional

from .plumbing.services import DEFAULT_ACL, RestartPolicy, StartMode


LOG = logging.getLogger(__name__)

SECTION = "installer"

ENV_CONFIG = "WINPKG_CONFIG"
"""
Environment variable overriding the location of the settings file.
"""


def default_path() -> str:
    base = os.getenv("ProgramData") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, "winpkg", "winpkg.ini")


def default_packages() -> str:
    """
    Directory holding component archives, by default a `resources` folder in the current directory.
    """
    return os.path.join(os.getcwd(), "resources")


class Settings(NamedTuple):
    """
    Site-wide options shared by all lifecycle operations.
    """

    packages: str
    """
    Directory holding component archives, named `<component>-<version>.zip`.
    """
    service_host: str
    """
    Service host executable copied in place for each role, by default `serviceHost.exe` alongside
    the archives.
    """
    restart_policy: RestartPolicy = RestartPolicy()
    start_mode: StartMode = StartMode.demand
    service_acl: str = DEFAULT_ACL

    def archive(self, name: str) -> str:
        return os.path.join(self.packages, "{}.zip".format(name))


def load(path: Optional[str] = None) -> Settings:
    """
    Read installer settings from the given file, `$WINPKG_CONFIG`, or the default location.
    """
    path = path or os.getenv(ENV_CONFIG) or default_path()
    parser = configparser.ConfigParser(interpolation=None)
    if parser.read(path, encoding="utf-8"):
        LOG.debug("Loaded settings from %r", path)
    else:
        LOG.debug("No settings file at %r, using defaults", path)
    section = parser[SECTION] if parser.has_section(SECTION) else parser[parser.default_section]
    packages = section.get("packages") or default_packages()
    defaults = RestartPolicy()
    try:
        policy = RestartPolicy(section.getint("reset_window", defaults.reset_window),
                               section.getint("restart_delay", defaults.restart_delay))
        mode = StartMode(section.get("start_mode", StartMode.demand.value))
    except ValueError as ex:
        raise ValueError("Invalid settings in {!r}: {}".format(path, ex)) from ex
    return Settings(packages=packages,
                    service_host=(section.get("service_host")
                                  or os.path.join(packages, "serviceHost.exe")),
                    restart_policy=policy,
                    start_mode=mode,
                    service_acl=section.get("service_acl") or DEFAULT_ACL)
