"""oakc backends: abstract stack-machine operations -> target assembly."""

from oakc.target import DEFAULT_TARGET, Target, UnknownTargetError, available_targets, get_target
from oakc.dcpu16 import Dcpu16Target

__all__ = [
    "DEFAULT_TARGET",
    "Dcpu16Target",
    "Target",
    "UnknownTargetError",
    "available_targets",
    "get_target",
]
