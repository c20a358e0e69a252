#!/usr/bin/env python3
"""
oakc-emit — Oak operation list (JSON) -> target assembly

Usage:
  oakc-emit program.json -o main.dasm16 --run
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from oakc import dcpu16, lower
from oakc.ops import OperationError, load_program_file
from oakc.target import DEFAULT_TARGET, available_targets, get_target

_LOGGER = logging.getLogger("oakc.cli")


def _int_arg(text: str) -> int:
    try:
        return int(text, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{text}'") from exc


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="oakc-emit", description="Emit target assembly for an Oak operation list")
    ap.add_argument("input", help="JSON program: {\"vars\": n, \"heap\": n, \"ops\": [...]}")
    ap.add_argument("-o", "--output", default=dcpu16.DEFAULT_OUTPUT)
    ap.add_argument("--target", default=DEFAULT_TARGET, help=f"backend (available: {', '.join(available_targets()) or DEFAULT_TARGET})")
    ap.add_argument("--heap-base", type=_int_arg, default=dcpu16.HEAP_BASE)
    ap.add_argument("--return-stack-base", type=_int_arg, default=dcpu16.RETURN_STACK_BASE)
    ap.add_argument("--return-stack-depth", type=_int_arg, default=dcpu16.RETURN_STACK_DEPTH)
    ap.add_argument("--runtime", help="runtime text to splice into the prelude instead of the bundled one")
    ap.add_argument("--run", action="store_true", help="execute the module on the reference VM and print the value stack")
    ap.add_argument("--max-steps", type=_int_arg, default=100_000)
    ap.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return ap


def _run_module(text: str, program, max_steps: int) -> int:
    from oakc.dasm import assemble_text
    from oakc.platforms.dcpu16_vm import Dcpu16VM, VMError, signed

    try:
        image = assemble_text(text)
        vm = Dcpu16VM(image.words)
        vm.run(max_steps)
    except (ValueError, VMError) as exc:
        print(f"run failed: {exc}", file=sys.stderr)
        return 1
    base = 0x10000 - (program.var_size + program.heap_size + 1)
    stack = [signed(word) for word in vm.value_stack(base)]
    print(f"halted after {vm.steps} steps; stack: {stack}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        program = load_program_file(args.input)
    except (OSError, OperationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    options = {
        "heap_base": args.heap_base,
        "return_stack_base": args.return_stack_base,
        "return_stack_depth": args.return_stack_depth,
    }
    if args.runtime:
        options["runtime_path"] = args.runtime
    try:
        target = get_target(args.target, **options)
        text = lower.build_module(program, target)
    except (ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if not target.compile(text, args.output):
        print(f"error: could not write {args.output}", file=sys.stderr)
        return 1
    print(f"Wrote {args.output}")
    _LOGGER.debug("module is %d lines", text.count("\n"))

    if args.run:
        if target.name != "dcpu16":
            print(f"error: --run only supports dcpu16, not {target.name}", file=sys.stderr)
            return 1
        return _run_module(text, program, args.max_steps)
    return 0


if __name__ == "__main__":
    sys.exit(main())
