"""
Helpers for converting methods into scripts, and filling in arguments from the command line.
"""

from functools import wraps
from getpass import getpass
from inspect import cleandoc, signature
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from docopt import docopt

from .. import config
from ..config import Settings
from ..plumbing.common import Credential, InstallerError, LOCAL_SYSTEM, Password
from ..plumbing.services import BUILTIN_ACCOUNTS


DocOptArgs = Dict[str, Union[bool, str, List[str], None]]

NoneType = type(None)

ENV_PASSWORD = "WINPKG_PASSWORD"
"""
Environment variable holding the service account's password, to avoid an interactive prompt.
"""

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


ENTRYPOINTS: List[str] = []


def get_credential(username: Optional[str]) -> Optional[Credential]:
    """
    Build a credential for a service account, taking its password from `$WINPKG_PASSWORD` or
    prompting for it.
    """
    if not username:
        return None
    if username in BUILTIN_ACCOUNTS:
        return Credential(username)
    passwd = os.getenv(ENV_PASSWORD)
    if passwd is None:
        passwd = getpass("Password for {}: ".format(username))
    return Credential(username, Password(passwd))


def parse_properties(pairs: List[str]) -> Dict[str, str]:
    """
    Convert `name=value` arguments into a mapping, keeping the order given.  Values may be empty.
    """
    properties: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            error("Expected a property as name=value, got {!r}".format(pair), exit=2)
        properties[name] = value
    return properties


def _lookup(opts: DocOptArgs, name: str) -> Any:
    for key in (name.upper(), "<{}>".format(name), "--{}".format(name.replace("_", "-"))):
        if key in opts:
            return opts[key]
    raise RuntimeError("Missing argument {!r}".format(name))


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    Functions may optionally accept arguments, but they must be annotated with a recognised type in
    order to be filled in.  The following types are fixed and always available:

    - `DocOptArgs` (a `dict` of input parameters parsed from the usage line)
    - `Settings` (installer settings, from `--config` or the default location)
    - `Credential` (the account named by `--username`, or `LocalSystem`; if `Optional`, `None`
      when no username is given)

    Parameters of type `str`, `bool` or `List[str]` are filled from an input parameter matching the
    variable name (declared in the usage line in upper case, surrounded by arrow brackets, or as a
    long option, e.g. `ROOT`, `<root>` or `--root`).  Repeated arguments passed to a `str`
    parameter are joined with spaces.

    An example function:

        @entrypoint
        def stop(component: str, roles: str):
            \"""
            Stop a component's services.

            Usage: {script} COMPONENT ROLES...
            \"""

    Any `InstallerError` raised by the function is printed, and exits with a non-zero status.
    """
    label = "winpkg-{}".format(fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None, argv: Optional[List[str]] = None):
        extra: Dict[str, Any] = {}
        script = "{} [--debug] [--config=FILE]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc, argv=argv)
        else:
            opts = dict(opts)
        debug = opts.pop("--debug", False)
        logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
        config_path = opts.pop("--config", None)
        sig = signature(fn)
        for param in sig.parameters.values():
            name = param.name
            cls = param.annotation
            optional = False
            # Unpick Optional[X] by reading the type object arguments and removing type(None).
            if getattr(cls, "__origin__", None) is Union and NoneType in cls.__args__:
                optional = True
                cls = Union[tuple(arg for arg in cls.__args__ if arg is not NoneType)]
            if cls is DocOptArgs:
                extra[name] = opts
            elif cls is Settings:
                extra[name] = config.load(config_path)
            elif cls is Credential:
                credential = get_credential(opts.get("--username"))
                extra[name] = credential if credential or optional else LOCAL_SYSTEM
            elif cls is str:
                value = _lookup(opts, name)
                extra[name] = " ".join(value) if isinstance(value, list) else value
            elif cls is bool:
                extra[name] = bool(_lookup(opts, name))
            elif cls == List[str]:
                value = _lookup(opts, name)
                extra[name] = list(value or ())
            else:
                raise RuntimeError("Bad parameter {!r} type {!r}".format(name, cls))
        try:
            return fn(**extra)
        except InstallerError as ex:
            error(str(ex), exit=1)
    wrap.__doc__ = wrap.__doc__.format(script=label)
    # Create a console script line for setup.
    target = "{}:{}".format(fn.__module__, fn.__qualname__)
    ENTRYPOINTS.append("{}={}".format(label, target))
    return wrap


def confirm(msg: str = "Are you sure?"):
    """
    Prompt for confirmation before destructive actions.
    """
    try:
        yn = input("\033[96m{} [yN]\033[0m ".format(msg))
    except (KeyboardInterrupt, EOFError):
        print()
        yn = "n"
    if yn.lower() not in ("y", "yes"):
        error("Aborted!", exit=1)


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)
    if exit is not None:
        sys.exit(exit)
