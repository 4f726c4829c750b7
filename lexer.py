from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple

from grammar import COMMENT, WHITESPACE, Scratch, TypeSpec, Value


class ErrorCode(IntEnum):
    SUCCESS = 0x0
    THROWN_ERROR = 0x1
    TYPE_MISMATCH = 0x2
    TOO_MANY_ARGUMENTS = 0x3
    TOO_FEW_ARGUMENTS = 0x4
    UNKNOWN_TYPE = 0x5
    UNCLOSED_ARGUMENT = 0x6
    SYNTAX_ERROR = 0x7
    UNKNOWN_COMMAND = 0x9
    UNKNOWN_VARIABLE = 0xA
    PARSE_FAILURE = 0xB


_DESCRIPTIONS = {
    ErrorCode.SUCCESS: "No errors were found.",
    ErrorCode.THROWN_ERROR: "Thrown error.",
    ErrorCode.TYPE_MISMATCH: "Unexpected argument type.",
    ErrorCode.TOO_MANY_ARGUMENTS: "Too many arguments provided.",
    ErrorCode.TOO_FEW_ARGUMENTS: "Too few arguments provided.",
    ErrorCode.UNKNOWN_TYPE: "Unknown type; perhaps you forgot a space?",
    ErrorCode.UNCLOSED_ARGUMENT: "Unclosed argument; make sure strings, arrays, etc. have a closing mark.",
    ErrorCode.SYNTAX_ERROR: "Syntax Error.",
    ErrorCode.UNKNOWN_COMMAND: "Unknown command; make sure you spelled it correctly.",
    ErrorCode.UNKNOWN_VARIABLE: "Unknown variable; make sure you spelled it correctly and the variable is defined.",
    ErrorCode.PARSE_FAILURE: "Unknown type; value could not be parsed.",
}


def describe(code: int) -> str:
    try:
        return _DESCRIPTIONS[ErrorCode(code)]
    except ValueError:
        return f"Unrecognized error code 0x{int(code):X}."


def code_name(code: int) -> str:
    try:
        member = ErrorCode(code)
    except ValueError:
        return f"0x{int(code):X}"
    return "".join(part.capitalize() for part in member.name.split("_"))


class CommanderError(Exception):
    """Base class for interpreter errors."""


class CommandFailure(CommanderError):
    """A line failed to tokenize, bind or execute.

    Handlers raise this to stop a batch with a specific code; the default is
    ``ErrorCode.THROWN_ERROR``.
    """

    def __init__(
        self,
        message: str = "",
        *,
        code: int = ErrorCode.THROWN_ERROR,
        column: Optional[int] = None,
    ) -> None:
        super().__init__(message or describe(code))
        self.message = message or describe(code)
        self.code = int(code)
        self.column = column
        self.line_index: Optional[int] = None
        self.text: Optional[str] = None


class ExtensionError(CommanderError):
    """Raised for invalid type/command registrations and extension loading."""


class EngineBusyError(CommanderError):
    """Raised when a run is started while another is still active."""


@dataclass
class ParsedLine:
    command: str = ""
    args: List[Value] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.command


class Lexer:
    """Splits one line into a command name and typed arguments.

    ``types`` is consulted in iteration order, so the caller hands over an
    already priority-sorted registry.
    """

    def __init__(self, types: Iterable[TypeSpec], *, whitespace: str = WHITESPACE, comment: str = COMMENT) -> None:
        self.types = types
        self.whitespace = whitespace
        self.comment = comment

    def tokenize(self, line: str) -> ParsedLine:
        text = line.strip()
        if not text or text.startswith(self.comment):
            return ParsedLine()

        whitespace = self.whitespace
        # Synthetic trailing separator flushes the last token.
        text += whitespace[0]

        command = ""
        args: List[Value] = []
        word: List[str] = []
        active: Optional[TypeSpec] = None
        scratch = Scratch()
        closed = False
        start = 0

        for index, ch in enumerate(text):
            is_space = ch in whitespace

            if not command:
                if is_space:
                    command = "".join(word)
                    word = []
                else:
                    word.append(ch)
                continue

            if active is not None and closed:
                if not is_space:
                    raise CommandFailure(
                        f"'{ch}' follows a completed {active.name} argument without a separator",
                        code=ErrorCode.UNKNOWN_TYPE,
                        column=index,
                    )
                args.append(self._finish(active, "".join(word), start))
                active, word, closed = None, [], False
                continue

            if active is not None:
                if active.end(ch, scratch):
                    if is_space:
                        args.append(self._finish(active, "".join(word), start))
                        active, word = None, []
                        continue
                    closed = True
                word.append(ch)
                continue

            if is_space:
                continue

            active, scratch = self._select(ch, index)
            start = index
            word = [ch]

        if active is not None:
            raise CommandFailure(
                f"{active.name} argument starting at column {start} is never closed",
                code=ErrorCode.UNCLOSED_ARGUMENT,
                column=start,
            )
        return ParsedLine(command=command.upper(), args=args)

    def _select(self, ch: str, index: int) -> Tuple[TypeSpec, Scratch]:
        for spec in self.types:
            scratch = Scratch()
            if spec.begin(ch, scratch):
                return spec, scratch
        raise CommandFailure(f"No type begins with '{ch}'", code=ErrorCode.UNKNOWN_TYPE, column=index)

    def _finish(self, spec: TypeSpec, literal: str, start: int) -> Value:
        try:
            parsed = spec.parse(literal)
        except Exception as exc:
            raise CommandFailure(
                f"{spec.name} parser failed on {literal.strip()!r}: {exc}",
                code=ErrorCode.PARSE_FAILURE,
                column=start,
            ) from exc
        if not isinstance(parsed, Value):
            raise CommandFailure(
                f"{spec.name} parser returned {type(parsed).__name__}, not Value",
                code=ErrorCode.PARSE_FAILURE,
                column=start,
            )
        if parsed.is_error:
            raise CommandFailure(
                f"Invalid {spec.name} literal {literal.strip()!r}",
                code=ErrorCode.SYNTAX_ERROR,
                column=start,
            )
        return Value(parsed.type, parsed.value, literal.strip())
