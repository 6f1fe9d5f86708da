"""
Shared helper methods, base classes and exceptions.
"""

from enum import Enum
from functools import wraps
import inspect
import logging
import platform
import subprocess
from typing import (Any, Callable, Generator, Generic, Iterable, List, NamedTuple, Optional,
                    Sequence, TypeVar, Union)


LOG = logging.getLogger(__name__)

T = TypeVar("T")

Collect = Generator["Result[Any]", None, T]
"""
Generic type for the return value of functions using `Result.collect`.
"""

WINDOWS = "Windows"
"""
Value of `platform.system()` on hosts with a Service Control Manager.
"""


class InstallerError(Exception):
    """
    Base class for failures that should be reported to the caller without a traceback.
    """


class UnsupportedComponent(InstallerError):
    """
    The requested component is not one this installer knows how to manage.
    """


class UnsupportedRole(InstallerError):
    """
    One or more requested roles are not provided by the component.
    """


class PrerequisiteMissing(InstallerError):
    """
    A runtime the component depends on could not be found.
    """


class NotInstalled(InstallerError):
    """
    The component has not been installed under the given root.
    """


class NotFound(InstallerError):
    """
    A configuration file is missing.
    """


class CreationFailed(InstallerError):
    """
    A service could not be registered, or was registered but could not be fully configured.
    """


class DeletionFailed(InstallerError):
    """
    A service or directory tree could not be removed.
    """


class Unset:
    """
    Constructor of generic default values for optional but nullable parameters.
    """

    def __repr__(self):
        return "UNSET"


UNSET = Unset()
"""
Global generic default value.
"""


class State(Enum):
    """
    Enumeration used by `Result` to declare whether the action happened.
    """

    unchanged = 0
    """
    No action required, the request and current state are consistent.
    """
    success = 1
    """
    The action was completed without issues.
    """
    created = 2
    """
    The action resulted in the creation of a new object or record.
    """

    def __bool__(self):
        return bool(self.value)


class Result(Generic[T]):
    """
    State and optional accompanying value from a unit of work.

    For a simple plumbing action, just create a new result directly with the resulting `State` and
    a value if relevant:

        def unit():
            # Register a service, write a file etc.
            return Result(State.success, True)

    For a task that combines multiple results, see `Result.collect`.  The state of such a result is
    based on all of its parts -- if any changes were made, the outer result also reports a change.

    A result can be checked for truthiness, which is `False` if no changes were made.

    A result can also be converted to a string, which produces a tree-like summary of changes:

        module:task success True
            module:unit1 unchanged
            module:unit2 success
    """

    @classmethod
    def _collector(cls, fn: Callable[..., Collect[T]], keep_none: bool) -> Callable[..., "Result[T]"]:
        @wraps(fn)
        def inner(*args: Any, **kwargs: Any) -> Result[T]:
            value: Union[T, Unset] = UNSET
            parts: List[Result[Any]] = []
            gen = fn(*args, **kwargs)
            try:
                while True:
                    result = next(gen)
                    parts.append(result)
            except StopIteration as ex:
                if keep_none or ex.value is not None:
                    value = ex.value
            return cls(None, value, parts, fn)
        return inner

    @classmethod
    def collect(cls, fn: Callable[..., Collect[T]]) -> Callable[..., "Result[T]"]:
        """
        Decorator: build a `Result` from multiple sub-tasks:

            def plumb_b() -> Result[str]: ...

            @Result.collect
            def task() -> Collect[str]:
                yield plumb_a()
                result = yield from plumb_b()
                if result:
                    yield plumb_c()
                return result.value

        The inner function this decorator wraps should be a generator of `Result` objects.

        The return value of the wrapper function will be a new `Result` object, whose `parts` will
        be those collected sub-task results, and whose `value` will be set to the return value of
        the inner function if it returned anything other than `None`.
        """
        return cls._collector(fn, False)

    @classmethod
    def collect_value(cls, fn: Callable[..., Collect[T]]) -> Callable[..., "Result[T]"]:
        """
        Decorator: like `Result.collect`, but always set the value, even if it is `None`.
        """
        return cls._collector(fn, True)

    def __init__(self, state: Optional[State] = None, value: Union[T, Unset] = UNSET,
                 parts: Iterable["Result[Any]"] = (), caller: Optional[Callable[..., Any]] = None):
        self._state = state
        self._value = value
        self.parts = tuple(parts)
        self.caller = "<unknown>"
        # Inspection magic to log the calling method, e.g. `module.sub:Class.method`.
        name = None
        if not caller:
            frame = inspect.currentframe()
            try:
                name = frame.f_back.f_code.co_name
                caller = frame.f_back.f_globals[name]
            except (AttributeError, KeyError):
                pass
        if caller:
            self.caller = "{}:{}".format(caller.__module__, caller.__qualname__)
        elif name:
            self.caller = name

    @property
    def state(self) -> State:
        """
        Modification state of the unit of work.

        This may be set directly, computed from `parts`, or defaulted to `State.unchanged`.
        """
        if self._state:
            return self._state
        elif any(self.parts):
            if any(part.state == State.created for part in self.parts):
                return State.created
            else:
                return State.success
        else:
            return State.unchanged

    @state.setter
    def state(self, state: State) -> None:
        self._state = state

    @property
    def value(self) -> T:
        """
        Return value produced by the unit of work.

        Accessing this attribute will raise `ValueError` if no value has been set.
        """
        if isinstance(self._value, Unset):
            raise ValueError("No value set")
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        self._value = value

    def __bool__(self) -> bool:
        return bool(self.state)

    def __iter__(self) -> Generator["Result[T]", None, "Result[T]"]:
        # Syntactic sugar used by `yield from` expressions in `Result.collect()`.
        yield self
        return self

    def __repr__(self) -> str:
        params = [str(self.state)]
        if not isinstance(self._value, Unset):
            params.append(repr(self._value))
        if self.parts:
            params.append("<{} parts>".format(len(self.parts)))
        return "{}({})".format(self.__class__.__name__, ", ".join(params))

    def __str__(self) -> str:
        tree = "{}: {}".format(self.caller, self.state.name)
        if not isinstance(self._value, Unset):
            tree = "{} {!r}".format(tree, self._value)
        if self.parts:
            for result in self.parts:
                tree += "\n    {}".format(str(result).replace("\n", "\n    "))
        return tree


class Password:
    """
    Container of secret values.  Use `str(passwd)` to get the actual value.
    """

    def __init__(self, value: str):
        self._value = value

    def __str__(self):
        return self._value

    def __repr__(self):
        return "<{}: '***'>".format(self.__class__.__name__)


class Credential(NamedTuple):
    """
    Account that a service runs as.  Built-in accounts such as `LocalSystem` have no password.
    """

    username: str
    password: Optional[Password] = None


LOCAL_SYSTEM = Credential("LocalSystem")


def require_system(*systems: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Only allow a function to be called on the given operating systems, identified by
    `platform.system()`:

        @require_system(WINDOWS)
        def create(record): ...
    """
    def outer(fn: Callable[..., T]) -> Callable[..., T]:
        @wraps(fn)
        def inner(*args: Any, **kwargs: Any):
            system = platform.system()
            if system not in systems:
                raise RuntimeError("{}() can't be used on {}, requires {}"
                                   .format(fn.__name__, system, "/".join(systems)))
            return fn(*args, **kwargs)
        return inner
    return outer


def command(args: Sequence[Union[str, Password]],
            output: bool = False) -> "subprocess.CompletedProcess[bytes]":
    """
    Create a subprocess to execute an external command.

    Arguments wrapped in `Password` are passed through in plain text, but masked in the log.
    """
    LOG.debug("Exec: %r", args)
    return subprocess.run([str(arg) for arg in args],
                          stdout=subprocess.PIPE if output else None, check=True)
