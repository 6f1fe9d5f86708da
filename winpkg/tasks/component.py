"""
Install, configure, start and stop a component and the services for each of its roles.

Nothing here keeps state between calls: each operation works out where things stand from the
filesystem and the Service Control Manager.  The only record left behind by `install` is a
machine-scope `<COMPONENT>_HOME` environment variable, for the benefit of other tooling.
"""

import logging
import os
from subprocess import CalledProcessError
from typing import Dict, FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union
from urllib.parse import unquote, urlparse

from .. import config
from ..config import Settings
from ..plumbing import files, services, windows, xmlconf
from ..plumbing.common import (Collect, Credential, InstallerError, NotInstalled,
                               PrerequisiteMissing, Result, UnsupportedComponent, UnsupportedRole)


LOG = logging.getLogger(__name__)


class ComponentSpec(NamedTuple):
    """
    Static description of a component that can be installed.
    """

    name: str
    version: str
    title: str
    roles: FrozenSet[str]
    config_file: str
    """
    Site configuration file, relative to the install directory.
    """
    folders: Tuple[str, ...]
    """
    Properties of the site configuration whose values are local directories used by the services.
    """
    main_classes: Mapping[str, str]
    """
    Java class and arguments run by the service of each role.
    """

    @property
    def package(self) -> str:
        return "{}-{}".format(self.name, self.version)

    @property
    def variable(self) -> str:
        return "{}_HOME".format(self.name.upper())


class InstallLayout(NamedTuple):
    """
    Paths of an installed component.
    """

    root: str
    home: str
    bin: str
    conf: str

    @classmethod
    def from_home(cls, home: str) -> "InstallLayout":
        return cls(os.path.dirname(home), home, os.path.join(home, "bin"),
                   os.path.join(home, "conf"))


class Prerequisite(NamedTuple):
    """
    Runtime located by an environment variable, verified by the presence of an executable.
    """

    name: str
    variable: str
    executable: Tuple[str, ...]


PREREQUISITES = (Prerequisite("Java", "JAVA_HOME", ("bin", "java.exe")),
                 Prerequisite("Hadoop", "HADOOP_HOME", ("bin", "winutils.exe")))

HBASE = ComponentSpec(
    name="hbase",
    version="0.94.2",
    title="Apache HBase",
    roles=frozenset({"master", "regionserver", "thrift", "rest"}),
    config_file=os.path.join("conf", "hbase-site.xml"),
    folders=("hbase.tmp.dir", "hbase.local.dir", "hbase.zookeeper.property.dataDir"),
    main_classes={"master": "org.apache.hadoop.hbase.master.HMaster start",
                  "regionserver": "org.apache.hadoop.hbase.regionserver.HRegionServer start",
                  "thrift": "org.apache.hadoop.hbase.thrift.ThriftServer start",
                  "rest": "org.apache.hadoop.hbase.rest.RESTServer start"})

COMPONENTS: Dict[str, ComponentSpec] = {HBASE.name: HBASE}

Roles = Union[str, Iterable[str]]
"""
Role names, either as a list or a single space-separated string.
"""


def get_component(name: str) -> ComponentSpec:
    """
    Look up a supported component by name.
    """
    try:
        return COMPONENTS[name]
    except KeyError:
        raise UnsupportedComponent("Component {!r} is not supported, must be one of: {}"
                                   .format(name, ", ".join(sorted(COMPONENTS)))) from None


def parse_roles(spec: ComponentSpec, roles: Roles) -> List[str]:
    """
    Split and validate role names, rejecting the whole set if any one is unsupported.
    """
    if isinstance(roles, str):
        roles = roles.split()
    names = [role for role in roles if role]
    unknown = [role for role in names if role not in spec.roles]
    if unknown:
        raise UnsupportedRole("Role(s) {} not supported by {}, must be from: {}"
                              .format(", ".join(repr(role) for role in unknown), spec.name,
                                      ", ".join(sorted(spec.roles))))
    return names


def get_layout(spec: ComponentSpec, root: str) -> InstallLayout:
    return InstallLayout.from_home(os.path.join(os.path.abspath(root), spec.package))


def find_layout(spec: ComponentSpec) -> InstallLayout:
    """
    Locate an existing install from the environment variable left by `install`.
    """
    home = windows.get_variable(spec.variable)
    if not home:
        raise NotInstalled("{} is not installed, {} is not set".format(spec.name, spec.variable))
    return InstallLayout.from_home(home)


def check_prerequisites() -> Dict[str, str]:
    """
    Find the executables of all required runtimes, keyed by runtime name.
    """
    found = {}
    for prereq in PREREQUISITES:
        home = os.getenv(prereq.variable)
        if not home:
            raise PrerequisiteMissing("{} is required, but {} is not set"
                                      .format(prereq.name, prereq.variable))
        path = os.path.join(home, *prereq.executable)
        if not files.exists(path):
            raise PrerequisiteMissing("{} is required, but {!r} does not exist"
                                      .format(prereq.name, path))
        found[prereq.name] = path
    return found


def _local_path(value: str) -> str:
    # Directories may be given as `file:` URIs, e.g. file:///C:/hadoop/hbase/tmp.
    if not value.startswith("file:"):
        return value
    path = unquote(urlparse(value).path)
    if len(path) > 2 and path[0] == "/" and path[2] == ":":
        path = path[1:]
    return os.path.normpath(path)


def _grant(path: str, credential: Credential) -> Result[None]:
    if credential.username in services.BUILTIN_ACCOUNTS:
        # Built-in accounts already have access through SYSTEM or the local service groups.
        return Result()
    return windows.grant_acl(path, credential.username)


def service_record(spec: ComponentSpec, layout: InstallLayout, role: str, credential: Credential,
                   settings: Settings, java: str) -> services.ServiceRecord:
    """
    Describe the service for a single role of an installed component.
    """
    logs = os.path.join(layout.home, "logs")
    arguments = " ".join(("-Xmx1000m",
                          "-Dhadoop.log.dir={}".format(logs),
                          "-Dhbase.log.dir={}".format(logs),
                          "-Dhbase.log.file={}.log".format(role),
                          "-Dhbase.home.dir={}".format(layout.home),
                          "-classpath {}{}{}".format(layout.conf, os.pathsep,
                                                     os.path.join(layout.home, "lib", "*")),
                          spec.main_classes[role]))
    return services.ServiceRecord(name=role,
                                  binary_path=os.path.join(layout.bin, "{}.exe".format(role)),
                                  credential=credential,
                                  display_name="{} {}".format(spec.title, role),
                                  restart_policy=settings.restart_policy,
                                  start_mode=settings.start_mode,
                                  acl=settings.service_acl,
                                  host=settings.service_host,
                                  executable=java,
                                  arguments=arguments)


@Result.collect_value
def install(component: str, root: str, credential: Credential, roles: Roles,
            settings: Optional[Settings] = None) -> Collect[InstallLayout]:
    """
    Unpack a component's distribution under an install root, and record its location.

    Services are not registered here; see `start_service`.
    """
    spec = get_component(component)
    parse_roles(spec, roles)
    check_prerequisites()
    settings = settings or config.load()
    layout = get_layout(spec, root)
    LOG.info("Installing %s to %r", spec.package, layout.home)
    yield files.ensure_directory(layout.root)
    yield files.extract_archive(settings.archive(spec.package), layout.root)
    if os.path.isdir(layout.home):
        yield _grant(layout.home, credential)
    else:
        LOG.warning("Install directory %r missing after extraction", layout.home)
    LOG.info("Setting %s to %r", spec.variable, layout.home)
    yield windows.set_machine_variable(spec.variable, layout.home)
    return layout


@Result.collect
def uninstall(component: str, root: str) -> Collect[None]:
    """
    Remove an installed component's directory tree.

    The `<COMPONENT>_HOME` variable set by `install` is left in place.
    """
    spec = get_component(component)
    layout = get_layout(spec, root)
    LOG.info("Removing %r", layout.home)
    yield files.remove_tree(layout.home)


@Result.collect_value
def configure(component: str, root: str, credential: Credential, properties: xmlconf.Properties,
              acl_all_folders: bool = False) -> Collect[xmlconf.ConfigDocument]:
    """
    Apply properties to an installed component's site configuration, then create and grant the
    credential's user access to the data folders it names.

    With `acl_all_folders`, every folder in the component's manifest is processed, otherwise only
    those whose properties appear in `properties`.
    """
    spec = get_component(component)
    layout = get_layout(spec, root)
    if not os.path.isdir(layout.home):
        raise NotInstalled("{} is not installed at {!r}".format(spec.name, layout.home))
    path = os.path.join(layout.home, spec.config_file)
    LOG.info("Updating %r", path)
    res_doc = yield from xmlconf.reconcile(path, properties)
    document = res_doc.value
    if acl_all_folders:
        props = spec.folders
    else:
        props = tuple(prop for prop in spec.folders if prop in properties)
    for prop in props:
        try:
            value = document.get(prop)
        except KeyError:
            LOG.warning("Folder property %r is not set in %r", prop, path)
            continue
        if not value.strip():
            continue
        folder = _local_path(value.strip())
        LOG.info("Granting %s access to %r", credential.username, folder)
        yield files.ensure_directory(folder)
        yield _grant(folder, credential)
    return document


@Result.collect
def start_service(component: str, roles: Roles, layout: Optional[InstallLayout] = None,
                  credential: Optional[Credential] = None,
                  settings: Optional[Settings] = None) -> Collect[None]:
    """
    Start the services of the given roles, in order, stopping at the first failure.

    If a credential is given, each role's service is first recreated to run as that account.
    """
    spec = get_component(component)
    names = parse_roles(spec, roles)
    if credential is not None:
        java = check_prerequisites()["Java"]
        layout = layout or find_layout(spec)
        if not os.path.isdir(layout.home):
            raise NotInstalled("{} is not installed at {!r}".format(spec.name, layout.home))
        settings = settings or config.load()
    for role in names:
        if credential is not None:
            LOG.info("Registering service %r", role)
            yield services.ensure_service(service_record(spec, layout, role, credential,
                                                         settings, java))
        LOG.info("Starting service %r", role)
        yield services.start(role)


@Result.collect_value
def stop_service(component: str, roles: Roles) -> Collect[List[str]]:
    """
    Stop the services of the given roles, in order.  Failures are logged, and don't prevent
    stopping the remaining roles.

    The result value lists the roles whose services are no longer running.
    """
    spec = get_component(component)
    names = parse_roles(spec, roles)
    stopped = []
    for role in names:
        LOG.info("Stopping service %r", role)
        try:
            yield services.stop(role)
        except (CalledProcessError, InstallerError) as ex:
            LOG.warning("Failed to stop service %r: %s", role, ex)
        else:
            stopped.append(role)
    return stopped
