"""Commander extension: bracketed numeric arrays backed by numpy.

Adds a ``tensor`` argument type written as ``[1 2 3]`` or ``[[1 2] [3 4]]``
(commas are accepted as separators) and a few commands that store their
results in variables.
"""

from __future__ import annotations

from typing import Any, List, Tuple, Union

import numpy as np

from extensions import ExtensionAPI
from grammar import TYPE_NUMBER, Scratch, Value, error_value
from lexer import CommandFailure, ErrorCode

COMMANDER_EXTENSION_NAME = "tensor"
COMMANDER_EXTENSION_API_VERSION = 1

TYPE_TENSOR = "tensor"

Nested = Union[float, List["Nested"]]


# ---- grammar ----

def _tensor_begin(char: str, scratch: Scratch) -> bool:
    if char == "[":
        scratch.depth = 1
        return True
    return False


def _tensor_end(char: str, scratch: Scratch) -> bool:
    if char == "[":
        scratch.depth += 1
    elif char == "]":
        scratch.depth -= 1
    return scratch.depth == 0


def _read_nested(tokens: List[str], pos: int) -> Tuple[Nested, int]:
    # tokens[pos] is "["
    items: List[Nested] = []
    pos += 1
    while pos < len(tokens):
        tok = tokens[pos]
        if tok == "]":
            return items, pos + 1
        if tok == "[":
            child, pos = _read_nested(tokens, pos)
            items.append(child)
            continue
        items.append(float(tok))
        pos += 1
    raise ValueError("unbalanced brackets")


def _tensor_parse(literal: str) -> Value:
    text = literal.strip()
    tokens = text.replace("[", " [ ").replace("]", " ] ").replace(",", " ").split()
    try:
        nested, end = _read_nested(tokens, 0)
        if end != len(tokens):
            return error_value(text)
        data = np.array(nested, dtype=float)
    except ValueError:
        # Bad numerals and ragged rows both land here.
        return error_value(text)
    if data.size == 0:
        return error_value(text)
    return Value(TYPE_TENSOR, data)


# ---- commands ----

def _as_number(x: Any) -> Value:
    number = float(x)
    return Value(TYPE_NUMBER, int(number) if number.is_integer() else number)


def _tsum(engine, target: Value, tensor: Value) -> None:
    engine.setvar(str(target.value), _as_number(np.sum(tensor.value)).value, TYPE_NUMBER)


def _tshape(engine, target: Value, tensor: Value) -> None:
    shape = np.array(tensor.value.shape, dtype=float)
    engine.setvar(str(target.value), shape, TYPE_TENSOR)


def _tdot(engine, target: Value, left: Value, right: Value) -> None:
    try:
        product = np.dot(left.value, right.value)
    except ValueError as exc:
        raise CommandFailure(f"TDOT shapes do not align: {exc}", code=ErrorCode.TYPE_MISMATCH) from exc
    if np.ndim(product) == 0:
        engine.setvar(str(target.value), _as_number(product).value, TYPE_NUMBER)
    else:
        engine.setvar(str(target.value), np.asarray(product, dtype=float), TYPE_TENSOR)


def _tprint(engine, tensor: Value) -> None:
    engine.output_sink(np.array2string(tensor.value))


def commander_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="tensor", version="0.1.0")
    ext.register_type(TYPE_TENSOR, begin=_tensor_begin, end=_tensor_end, parse=_tensor_parse, priority=0)
    ext.register_command("TSUM", ["variable", "tensor"], _tsum, description="Store the sum of a tensor's elements.")
    ext.register_command("TSHAPE", ["variable", "tensor"], _tshape, description="Store a tensor's shape as a tensor.")
    ext.register_command("TDOT", ["variable", "tensor", "tensor"], _tdot, description="Store the dot product of two tensors.")
    ext.register_command("TPRINT", ["tensor"], _tprint, description="Write a tensor to the output.")
