"""Reference machine models for the targets oakc can emit code for."""

from .dcpu16_vm import Dcpu16VM, VMError, signed

__all__ = ["Dcpu16VM", "VMError", "signed"]
