"""Argument grammar: values, per-token scratch state and the default types."""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional


class BuiltinType(str, Enum):
    NUMBER = "number"
    BOOL = "bool"
    SYMBOL = "symbol"
    STRING = "string"
    VARIABLE = "variable"
    # Sentinels: never produced by a registered type.
    ANY = "any"
    ERROR = "error"


TYPE_NUMBER = BuiltinType.NUMBER.value
TYPE_BOOL = BuiltinType.BOOL.value
TYPE_SYMBOL = BuiltinType.SYMBOL.value
TYPE_STRING = BuiltinType.STRING.value
TYPE_VARIABLE = BuiltinType.VARIABLE.value
TYPE_ANY = BuiltinType.ANY.value
TYPE_ERROR = BuiltinType.ERROR.value

WHITESPACE = " \t"
COMMENT = "#"
SYMBOLS = "+=-><*&^%!~/?|"
QUOTES = "\"'"
NUMERALS = ".0123456789"
VARIABLE_SIGIL = "$"
VARIABLE_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")
OPERATORS = frozenset(
    {
        "=", "+", "-", "/", "*", "&", "|", "^", "%", ">", "<",
        "==", "+=", "-=", "/=", "*=", "&=", "|=", "^=", "%=", ">=", "<=",
    }
)

_ESCAPES = {"n": "\n", "t": "\t"}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_INT_RE = re.compile(r"-?\d+")
_FLOAT_RE = re.compile(r"-?(\d+\.\d*|\.\d+)")


@dataclass(frozen=True)
class Value:
    type: str
    value: Any
    literal: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.type == TYPE_ERROR


def error_value(literal: Optional[str] = None) -> Value:
    return Value(TYPE_ERROR, None, literal)


@dataclass
class Scratch:
    """Mutable state threaded through one token's begin/end calls.

    A fresh record is handed to every ``begin`` probe; the winning record
    follows the token through ``end`` and is dropped once it is parsed.
    ``data`` is free for host-defined types.
    """

    quote: Optional[str] = None
    escape: bool = False
    depth: int = 0
    data: Dict[str, Any] = field(default_factory=dict)


BeginPredicate = Callable[[str, Scratch], bool]
EndPredicate = Callable[[str, Scratch], bool]
LiteralParser = Callable[[str], Value]


@dataclass(frozen=True)
class TypeSpec:
    name: str
    begin: BeginPredicate
    end: EndPredicate
    parse: LiteralParser
    # None sorts after every explicit priority, in registration order.
    priority: Optional[int] = None


# ---- number ----

def _number_begin(char: str, scratch: Scratch) -> bool:
    return char in NUMERALS or char == "-"


def _number_end(char: str, scratch: Scratch) -> bool:
    return char not in NUMERALS


def _number_parse(literal: str) -> Value:
    text = literal.strip()
    # '-' also opens numbers, so minus operators arrive here.
    if text in OPERATORS:
        return Value(TYPE_SYMBOL, text)
    if _INT_RE.fullmatch(text):
        return Value(TYPE_NUMBER, int(text))
    if _FLOAT_RE.fullmatch(text):
        return Value(TYPE_NUMBER, float(text))
    return error_value(text)


# ---- bool ----

def _bool_begin(char: str, scratch: Scratch) -> bool:
    return char in ("t", "f")


def _bool_end(char: str, scratch: Scratch) -> bool:
    return char in WHITESPACE


def _bool_parse(literal: str) -> Value:
    text = literal.strip().upper()
    if text in ("T", "TRUE"):
        return Value(TYPE_BOOL, True)
    if text in ("F", "FALSE"):
        return Value(TYPE_BOOL, False)
    return error_value(literal.strip())


# ---- symbol ----

def _symbol_begin(char: str, scratch: Scratch) -> bool:
    return char in SYMBOLS


def _symbol_end(char: str, scratch: Scratch) -> bool:
    return char not in SYMBOLS


def _symbol_parse(literal: str) -> Value:
    text = literal.strip()
    if text in OPERATORS:
        return Value(TYPE_SYMBOL, text)
    return error_value(text)


# ---- string ----

def _string_begin(char: str, scratch: Scratch) -> bool:
    if char in QUOTES:
        scratch.quote = char
        return True
    return False


def _string_end(char: str, scratch: Scratch) -> bool:
    if scratch.escape:
        scratch.escape = False
        return False
    if char == "\\":
        scratch.escape = True
        return False
    return char == scratch.quote


def _string_parse(literal: str) -> Value:
    text = literal.strip()
    if len(text) < 2 or text[0] not in QUOTES or text[-1] != text[0]:
        return error_value(text)
    body = _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])
    return Value(TYPE_STRING, body)


# ---- variable ----

def _variable_begin(char: str, scratch: Scratch) -> bool:
    return char == VARIABLE_SIGIL


def _variable_end(char: str, scratch: Scratch) -> bool:
    return char not in VARIABLE_CHARS


def _variable_parse(literal: str) -> Value:
    text = literal.strip()
    name = text[1:]
    if not text.startswith(VARIABLE_SIGIL) or not name or not set(name) <= VARIABLE_CHARS:
        return error_value(text)
    return Value(TYPE_VARIABLE, text)


NUMBER = TypeSpec(name=TYPE_NUMBER, begin=_number_begin, end=_number_end, parse=_number_parse)
BOOL = TypeSpec(name=TYPE_BOOL, begin=_bool_begin, end=_bool_end, parse=_bool_parse)
SYMBOL = TypeSpec(name=TYPE_SYMBOL, begin=_symbol_begin, end=_symbol_end, parse=_symbol_parse)
STRING = TypeSpec(name=TYPE_STRING, begin=_string_begin, end=_string_end, parse=_string_parse)
VARIABLE = TypeSpec(name=TYPE_VARIABLE, begin=_variable_begin, end=_variable_end, parse=_variable_parse)

# Registration order decides ties between unprioritised types.
DEFAULT_TYPES = (NUMBER, BOOL, SYMBOL, STRING, VARIABLE)
