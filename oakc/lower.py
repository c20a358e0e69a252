"""Walk an operation sequence and stitch the target's fragments together.

Fragment order is the only contract between this driver and a backend:
fragments are concatenated verbatim, in operation order.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from oakc import ops as op
from oakc.target import Target

_LOGGER = logging.getLogger("oakc.lower")


def translate_op(operation: op.Operation, target: Target) -> str:
    if isinstance(operation, op.PushConstant):
        return target.push(operation.value)
    if isinstance(operation, op.Add):
        return target.add()
    if isinstance(operation, op.Subtract):
        return target.subtract()
    if isinstance(operation, op.Multiply):
        return target.multiply()
    if isinstance(operation, op.Divide):
        return target.divide()
    if isinstance(operation, op.Allocate):
        return target.allocate()
    if isinstance(operation, op.Free):
        return target.free()
    if isinstance(operation, op.Store):
        return target.store(operation.size)
    if isinstance(operation, op.Load):
        return target.load(operation.size)
    if isinstance(operation, op.DefineFunction):
        for inner in operation.body:
            if isinstance(inner, op.DefineFunction):
                raise op.OperationError(
                    f"function '{inner.name}' is defined inside '{operation.name}'; definitions must be top-level"
                )
        return target.define_function(operation.name, translate(operation.body, target))
    if isinstance(operation, op.CallFunction):
        return target.call_function(operation.name)
    if isinstance(operation, op.CallForeignFunction):
        return target.call_foreign_function(operation.name)
    if isinstance(operation, op.BeginLoop):
        return target.begin_loop(operation.loop_id)
    if isinstance(operation, op.EndLoop):
        return target.end_loop(operation.loop_id)
    raise op.OperationError(f"Unsupported operation {operation!r}")


def translate(operations: Iterable[op.Operation], target: Target) -> str:
    return "".join(translate_op(operation, target) for operation in operations)


def split_functions(
    operations: Iterable[op.Operation],
) -> Tuple[List[op.DefineFunction], List[op.Operation]]:
    functions: List[op.DefineFunction] = []
    body: List[op.Operation] = []
    seen = set()
    for operation in operations:
        if isinstance(operation, op.DefineFunction):
            if operation.name in seen:
                raise op.OperationError(f"Function already defined: {operation.name}")
            seen.add(operation.name)
            functions.append(operation)
        else:
            body.append(operation)
    return functions, body


def wrap_module(target: Target, body: str, *, functions: str = "", var_size: int = 0, heap_size: int = 0) -> str:
    """Place translated text between the target's framing fragments."""

    return "".join(
        (
            target.prelude(),
            functions,
            target.begin_entry_point(var_size, heap_size),
            body,
            target.end_entry_point(),
            target.postlude(),
        )
    )


def build_module(program: op.Program, target: Target) -> str:
    """Assemble a whole module.

    Function definitions are hoisted between the prelude and the entry point;
    the prelude jumps straight to the entry label, so they only run when
    called.
    """

    functions, body = split_functions(program.ops)
    _LOGGER.debug("lowering %d function(s) and %d top-level op(s)", len(functions), len(body))
    return wrap_module(
        target,
        translate(body, target),
        functions=translate(functions, target),
        var_size=program.var_size,
        heap_size=program.heap_size,
    )


def compile_program(program: op.Program, target: Target, path: Optional[str] = None) -> bool:
    return target.compile(build_module(program, target), path)
