"""Backend interface shared by every architecture oakc can emit code for.

A target turns one abstract stack-machine operation into a fragment of
assembly text. Fragments are pure functions of their arguments; the driver
in :mod:`oakc.lower` concatenates them in operation order.
"""

from __future__ import annotations

import abc
from typing import Callable, Dict, List, Optional, Type, TypeVar

DEFAULT_TARGET = "dcpu16"


class UnknownTargetError(ValueError):
    pass


class Target(abc.ABC):
    """One concrete implementation per architecture."""

    name: str = ""

    # Module framing -----------------------------------------------------

    @abc.abstractmethod
    def prelude(self) -> str: ...

    @abc.abstractmethod
    def postlude(self) -> str: ...

    @abc.abstractmethod
    def begin_entry_point(self, var_size: int, heap_size: int) -> str: ...

    @abc.abstractmethod
    def end_entry_point(self) -> str: ...

    # Value stack --------------------------------------------------------

    @abc.abstractmethod
    def push(self, value: float) -> str: ...

    @abc.abstractmethod
    def add(self) -> str: ...

    @abc.abstractmethod
    def subtract(self) -> str: ...

    @abc.abstractmethod
    def multiply(self) -> str: ...

    @abc.abstractmethod
    def divide(self) -> str: ...

    # Memory -------------------------------------------------------------

    @abc.abstractmethod
    def allocate(self) -> str: ...

    @abc.abstractmethod
    def free(self) -> str: ...

    @abc.abstractmethod
    def store(self, size: int) -> str: ...

    @abc.abstractmethod
    def load(self, size: int) -> str: ...

    # Functions and loops ------------------------------------------------

    @abc.abstractmethod
    def define_function(self, name: str, body: str) -> str: ...

    @abc.abstractmethod
    def call_function(self, name: str) -> str: ...

    @abc.abstractmethod
    def call_foreign_function(self, name: str) -> str: ...

    @abc.abstractmethod
    def begin_loop(self, loop_id: int) -> str: ...

    @abc.abstractmethod
    def end_loop(self, loop_id: int) -> str: ...

    # Output -------------------------------------------------------------

    @abc.abstractmethod
    def compile(self, code: str, path: Optional[str] = None) -> bool:
        """Persist ``code``; return False if the artifact could not be written."""


_TARGETS: Dict[str, Type[Target]] = {}

T = TypeVar("T", bound=Type[Target])


def register_target(name: str) -> Callable[[T], T]:
    def decorator(cls: T) -> T:
        if name in _TARGETS:
            raise ValueError(f"Target already registered: {name}")
        cls.name = name
        _TARGETS[name] = cls
        return cls

    return decorator


def available_targets() -> List[str]:
    return sorted(_TARGETS)


def get_target(name: str = DEFAULT_TARGET, **options) -> Target:
    # Concrete targets register themselves on import.
    from oakc import dcpu16  # noqa: F401

    try:
        cls = _TARGETS[name]
    except KeyError:
        known = ", ".join(available_targets()) or "none"
        raise UnknownTargetError(f"Unknown target '{name}' (available: {known})") from None
    return cls(**options)
