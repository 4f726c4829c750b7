"""Command syntax declarations.

A command declares its parameters as strings: a type name (``number``), a
union (``number|string``), the wildcard ``any``, each optionally prefixed
with ``?`` when the parameter may be omitted. Optional parameters must trail
the required ones.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Tuple, Union

from grammar import TYPE_ANY, TYPE_VARIABLE, Value
from lexer import ExtensionError

CommandHandler = Callable[..., Union[Optional[int], Awaitable[Optional[int]]]]


@dataclass(frozen=True)
class ParamSpec:
    types: FrozenSet[str]
    optional: bool = False
    source: str = ""

    @property
    def accepts_any(self) -> bool:
        return TYPE_ANY in self.types

    @property
    def accepts_variable(self) -> bool:
        # 'any' does not count: variables given to 'any' are still resolved.
        return TYPE_VARIABLE in self.types

    def accepts(self, value: Value) -> bool:
        return self.accepts_any or value.type in self.types

    def describe(self) -> str:
        names = "|".join(sorted(self.types))
        return f"[{names}]" if self.optional else f"<{names}>"


def parse_param(text: str) -> ParamSpec:
    raw = text.strip().lower()
    optional = raw.startswith("?")
    if optional:
        raw = raw[1:]
    names = [part.strip() for part in raw.split("|")]
    if not raw or any(not name for name in names):
        raise ExtensionError(f"Malformed parameter declaration {text!r}")
    return ParamSpec(types=frozenset(names), optional=optional, source=text.strip().lower())


def parse_syntax(params: Iterable[str]) -> Tuple[ParamSpec, ...]:
    specs = tuple(parse_param(p) for p in params)
    seen_optional = False
    for spec in specs:
        if spec.optional:
            seen_optional = True
        elif seen_optional:
            raise ExtensionError(f"Required parameter {spec.source!r} follows an optional one")
    return specs


@dataclass(frozen=True)
class CommandSpec:
    name: str
    syntax: Tuple[ParamSpec, ...]
    handler: CommandHandler
    description: str = ""
    listed: bool = True
    returns: str = TYPE_ANY

    @classmethod
    def build(
        cls,
        *,
        name: str,
        syntax: Iterable[str],
        handler: CommandHandler,
        description: str = "",
        listed: bool = True,
        returns: str = TYPE_ANY,
    ) -> "CommandSpec":
        if not name or not isinstance(name, str) or any(ch.isspace() for ch in name):
            raise ExtensionError(f"Command name must be a non-empty word, got {name!r}")
        if not callable(handler):
            raise ExtensionError(f"Handler for {name!r} is not callable")
        return cls(
            name=name.upper(),
            syntax=parse_syntax(syntax),
            handler=handler,
            description=description,
            listed=listed,
            returns=returns.lower(),
        )

    @property
    def min_args(self) -> int:
        return sum(1 for p in self.syntax if not p.optional)

    @property
    def max_args(self) -> int:
        return len(self.syntax)

    def usage(self) -> str:
        parts: List[str] = [self.name] + [p.describe() for p in self.syntax]
        if self.returns != TYPE_ANY:
            parts += ["->", self.returns]
        return " ".join(parts)
