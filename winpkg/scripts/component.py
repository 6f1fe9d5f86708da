"""
Scripts to install, configure, start and stop components.
"""

import logging
from typing import Optional

from .utils import confirm, DocOptArgs, entrypoint, error, parse_properties
from ..config import Settings
from ..plumbing.common import Credential
from ..tasks import component as lifecycle


LOG = logging.getLogger(__name__)


@entrypoint
def install(settings: Settings, credential: Credential, component: str, root: str, roles: str):
    """
    Unpack a component under an install root, and record its location in <COMPONENT>_HOME.

    Usage: {script} [--username=USER] COMPONENT ROOT ROLES...

    The service account (LocalSystem by default) is given access to the install directory.  Its
    password is read from $WINPKG_PASSWORD, or prompted for.  Services are not registered until
    the roles are first started with a username.
    """
    result = lifecycle.install(component, root, credential, roles, settings)
    LOG.debug("%s", result)
    print("Installed {} to {}".format(component, result.value.home))


@entrypoint
def uninstall(opts: DocOptArgs, component: str, root: str):
    """
    Delete an installed component's directory tree.

    Usage: {script} [--yes] COMPONENT ROOT
    """
    spec = lifecycle.get_component(component)
    if not opts["--yes"]:
        confirm("Delete {}?".format(lifecycle.get_layout(spec, root).home))
    result = lifecycle.uninstall(component, root)
    LOG.debug("%s", result)
    if result:
        print("Removed {}".format(component))
    else:
        print("{} was not installed".format(component))


@entrypoint
def configure(opts: DocOptArgs, credential: Credential, component: str, root: str,
              all_folders: bool):
    """
    Apply settings to a component's site configuration, and grant the service account access to
    its data folders.

    Usage: {script} [--username=USER] [--all-folders] COMPONENT ROOT [<property>...]

    Each property is given as name=value.  With --all-folders, every data folder of the component
    is created and granted, rather than only those being set.
    """
    properties = parse_properties(opts["<property>"])
    result = lifecycle.configure(component, root, credential, properties, all_folders)
    LOG.debug("%s", result)
    if result:
        print("Configured {}".format(component))
    else:
        print("{} already configured".format(component))


@entrypoint
def start(settings: Settings, credential: Optional[Credential], component: str,
          root: Optional[str], roles: str):
    """
    Start a component's services.

    Usage: {script} [--username=USER [--root=DIR]] COMPONENT ROLES...

    With a username, each role's service is recreated to run as that account before starting.  The
    install is found from --root, or from <COMPONENT>_HOME.
    """
    layout = None
    if root:
        layout = lifecycle.get_layout(lifecycle.get_component(component), root)
    result = lifecycle.start_service(component, roles, layout, credential, settings)
    LOG.debug("%s", result)
    print("Started {}".format(", ".join(roles.split())))


@entrypoint
def stop(component: str, roles: str):
    """
    Stop a component's services.  Roles that fail to stop are reported but don't stop the rest.

    Usage: {script} COMPONENT ROLES...
    """
    result = lifecycle.stop_service(component, roles)
    LOG.debug("%s", result)
    if result.value:
        print("Stopped {}".format(", ".join(result.value)))
    failed = [role for role in roles.split() if role not in result.value]
    if failed:
        error("Failed to stop {}".format(", ".join(failed)))
