"""Stock commands a host can install on an engine."""

from __future__ import annotations
import asyncio
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from grammar import TYPE_BOOL, Value
from lexer import CommandFailure, ErrorCode
from parser import CommandHandler

if TYPE_CHECKING:
    from interpreter import Engine

PRINT_MAX_ARGS = 8


def format_value(value: Value) -> str:
    if value.type == TYPE_BOOL:
        return "true" if value.value else "false"
    return str(value.value)


def _expect_whole(value: Value, rule: str) -> int:
    number = value.value
    if isinstance(number, float):
        if not number.is_integer():
            raise CommandFailure(f"{rule} expects a whole number, got {number}", code=ErrorCode.TYPE_MISMATCH)
        number = int(number)
    return int(number)


class StandardCommands:
    def __init__(self) -> None:
        self.table: List[Tuple[str, Sequence[str], CommandHandler, str, bool]] = []
        self._register("PRINT", ["?any"] * PRINT_MAX_ARGS, self._print, "Write the arguments to the output, separated by spaces.")
        self._register("SET", ["variable", "any"], self._set, "Store a value in a variable.")
        self._register("DEL", ["variable"], self._delete, "Remove a variable.")
        self._register("GOTO", ["number"], self._goto, "Continue the batch at a zero-based line index.")
        self._register("WAIT", ["number"], self._wait, "Pause the batch for a number of seconds.")
        self._register("HELP", ["?string"], self._help, "List commands, or show one command's syntax.")
        self._register("EXIT", ["?number"], self._exit, "Stop the batch, optionally with an error code.")
        self._register("ASSERT", ["bool|number"], self._assert, "Fail the batch when the value is false or zero.")
        self._register("THROW", ["?string"], self._throw, "Fail the batch with a thrown error.", listed=False)

    def _register(self, name: str, syntax: Sequence[str], handler: CommandHandler, description: str, listed: bool = True) -> None:
        self.table.append((name, syntax, handler, description, listed))

    def install(self, engine: "Engine") -> None:
        for name, syntax, handler, description, listed in self.table:
            engine.register_command(name, syntax, handler, description=description, listed=listed)

    def _print(self, engine: "Engine", *values: Value) -> None:
        engine.output_sink(" ".join(format_value(v) for v in values))

    def _set(self, engine: "Engine", target: Value, value: Value) -> None:
        engine.setvar(str(target.value), value.value, value.type)

    def _delete(self, engine: "Engine", target: Value) -> None:
        engine.delvar(str(target.value))

    def _goto(self, engine: "Engine", target: Value) -> None:
        engine.jump(_expect_whole(target, "GOTO"))

    async def _wait(self, engine: "Engine", seconds: Value) -> None:
        delay = float(seconds.value)
        if delay < 0:
            raise CommandFailure(f"WAIT expects a non-negative delay, got {seconds.value}", code=ErrorCode.TYPE_MISMATCH)
        await asyncio.sleep(delay)

    def _help(self, engine: "Engine", name: Optional[Value] = None) -> Optional[int]:
        if name is not None:
            spec = engine.command_registry.get_optional(str(name.value))
            if spec is None:
                raise CommandFailure(f"No command named '{name.value}'", code=ErrorCode.UNKNOWN_COMMAND)
            engine.output_sink(spec.usage())
            if spec.description:
                engine.output_sink(f"  {spec.description}")
            return None
        for listed in engine.listed_commands():
            spec = engine.command_registry.get(listed)
            engine.output_sink(f"{spec.usage():<40} {spec.description}".rstrip())
        return None

    def _exit(self, engine: "Engine", code: Optional[Value] = None) -> int:
        engine.jump(len(engine.batch))
        if code is None:
            return ErrorCode.SUCCESS
        return _expect_whole(code, "EXIT")

    def _assert(self, engine: "Engine", value: Value) -> None:
        if not value.value:
            raise CommandFailure(f"Assertion failed: {value.literal or value.value}")

    def _throw(self, engine: "Engine", message: Optional[Value] = None) -> None:
        raise CommandFailure(str(message.value) if message is not None else "")
