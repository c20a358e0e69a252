"""Abstract stack-machine operations consumed by the oakc backends.

Operations are immutable records. A frontend normally builds them directly;
:func:`load_program` also accepts a small JSON form so programs can be fed to
the ``oakc-emit`` tool.
"""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Set, Tuple, Union


class OperationError(ValueError):
    pass


@dataclass(frozen=True)
class PushConstant:
    value: float


@dataclass(frozen=True)
class Add:
    pass


@dataclass(frozen=True)
class Subtract:
    pass


@dataclass(frozen=True)
class Multiply:
    pass


@dataclass(frozen=True)
class Divide:
    pass


@dataclass(frozen=True)
class Allocate:
    pass


@dataclass(frozen=True)
class Free:
    pass


@dataclass(frozen=True)
class Store:
    size: int


@dataclass(frozen=True)
class Load:
    size: int


@dataclass(frozen=True)
class DefineFunction:
    name: str
    body: Tuple["Operation", ...] = ()


@dataclass(frozen=True)
class CallFunction:
    name: str


@dataclass(frozen=True)
class CallForeignFunction:
    name: str


@dataclass(frozen=True)
class BeginLoop:
    loop_id: int


@dataclass(frozen=True)
class EndLoop:
    loop_id: int


Operation = Union[
    PushConstant,
    Add,
    Subtract,
    Multiply,
    Divide,
    Allocate,
    Free,
    Store,
    Load,
    DefineFunction,
    CallFunction,
    CallForeignFunction,
    BeginLoop,
    EndLoop,
]


@dataclass(frozen=True)
class Program:
    ops: Tuple[Operation, ...]
    var_size: int = 0
    heap_size: int = 0


@dataclass
class LoopIds:
    """Monotonic loop numbering owned by the driver.

    ``open()`` hands out the next unused id (or claims an explicit one) and
    remembers it as the innermost loop; ``close()`` returns the innermost open
    id. Function bodies get their own open-loop list but share the counter and
    the set of used ids, so an id appears at most once per module.
    """

    _counter: Iterator[int] = field(default_factory=itertools.count)
    _open: List[int] = field(default_factory=list)
    _used: Set[int] = field(default_factory=set)

    def nested(self) -> "LoopIds":
        return LoopIds(_counter=self._counter, _used=self._used)

    def open(self, loop_id: Union[int, None] = None) -> int:
        if loop_id is None:
            loop_id = next(self._counter)
            while loop_id in self._used:
                loop_id = next(self._counter)
        elif loop_id < 0:
            raise OperationError(f"loop id must be non-negative, got {loop_id}")
        elif loop_id in self._used:
            raise OperationError(f"loop id {loop_id} is already used")
        self._used.add(loop_id)
        self._open.append(loop_id)
        return loop_id

    def close(self, loop_id: Union[int, None] = None) -> int:
        if not self._open:
            raise OperationError("end_loop without a matching begin_loop")
        innermost = self._open.pop()
        if loop_id is not None and loop_id != innermost:
            raise OperationError(f"end_loop {loop_id} closes loop {innermost}")
        return innermost

    @property
    def depth(self) -> int:
        return len(self._open)


_SIMPLE_OPS = {
    "add": Add,
    "subtract": Subtract,
    "sub": Subtract,
    "multiply": Multiply,
    "mul": Multiply,
    "divide": Divide,
    "div": Divide,
    "allocate": Allocate,
    "alloc": Allocate,
    "free": Free,
}


def _require(entry: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in entry:
        raise OperationError(f"{where}: missing '{key}'")
    value = entry[key]
    if kind is int and isinstance(value, bool):
        raise OperationError(f"{where}: '{key}' must be an integer")
    if kind is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise OperationError(f"{where}: '{key}' must be a number")
        return value
    if not isinstance(value, kind):
        raise OperationError(f"{where}: '{key}' must be {kind.__name__}")
    return value


def _optional_id(entry: Dict[str, Any], where: str) -> Union[int, None]:
    if entry.get("id") is None:
        return None
    return _require(entry, "id", int, where)


def _parse_ops(items: Any, loops: LoopIds, where: str) -> Tuple[Operation, ...]:
    if not isinstance(items, list):
        raise OperationError(f"{where}: expected a list of operations")
    out: List[Operation] = []
    for idx, item in enumerate(items):
        loc = f"{where}[{idx}]"
        if isinstance(item, str):
            item = {"op": item}
        if not isinstance(item, dict):
            raise OperationError(f"{loc}: operation must be a string or object")
        name = item.get("op")
        if not isinstance(name, str):
            raise OperationError(f"{loc}: missing 'op'")
        name = name.lower()
        if name in _SIMPLE_OPS:
            out.append(_SIMPLE_OPS[name]())
        elif name == "push":
            out.append(PushConstant(_require(item, "value", float, loc)))
        elif name in ("store", "load"):
            size = _require(item, "size", int, loc)
            if size < 1:
                raise OperationError(f"{loc}: size must be at least 1")
            out.append(Store(size) if name == "store" else Load(size))
        elif name in ("fn", "function", "define"):
            fn_name = _require(item, "name", str, loc)
            body_loops = loops.nested()
            body = _parse_ops(item.get("body", []), body_loops, f"{loc}.body")
            if body_loops.depth:
                raise OperationError(f"{loc}: unterminated loop in function '{fn_name}'")
            out.append(DefineFunction(fn_name, body))
        elif name == "call":
            out.append(CallFunction(_require(item, "name", str, loc)))
        elif name in ("call_foreign", "foreign"):
            out.append(CallForeignFunction(_require(item, "name", str, loc)))
        elif name in ("begin_loop", "while"):
            loop_id = _optional_id(item, loc)
            try:
                out.append(BeginLoop(loops.open(loop_id)))
            except OperationError as exc:
                raise OperationError(f"{loc}: {exc}") from exc
        elif name in ("end_loop", "end"):
            loop_id = _optional_id(item, loc)
            try:
                out.append(EndLoop(loops.close(loop_id)))
            except OperationError as exc:
                raise OperationError(f"{loc}: {exc}") from exc
        else:
            raise OperationError(f"{loc}: unknown operation '{name}'")
    return tuple(out)


def load_program(data: Any) -> Program:
    """Build a :class:`Program` from decoded JSON."""

    if isinstance(data, list):
        data = {"ops": data}
    if not isinstance(data, dict):
        raise OperationError("program must be a JSON object or list")
    var_size = data.get("vars", 0)
    heap_size = data.get("heap", 0)
    for key, value in (("vars", var_size), ("heap", heap_size)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise OperationError(f"'{key}' must be a non-negative integer")
    loops = LoopIds()
    ops = _parse_ops(data.get("ops", []), loops, "ops")
    if loops.depth:
        raise OperationError(f"{loops.depth} loop(s) left open at end of program")
    return Program(ops, var_size=var_size, heap_size=heap_size)


def load_program_file(path: Union[str, Path]) -> Program:
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OperationError(f"{path}: invalid JSON: {exc}") from exc
    return load_program(data)
