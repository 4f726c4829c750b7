from __future__ import annotations
import asyncio
import inspect
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from extensions import (
    CommandRegistry,
    HookRegistry,
    RuntimeServices,
    StepContext,
    TypeRegistry,
    build_default_services,
)
from grammar import COMMENT, DEFAULT_TYPES, TYPE_VARIABLE, VARIABLE_SIGIL, WHITESPACE, TypeSpec, Value
from lexer import (
    CommanderError,
    CommandFailure,
    EngineBusyError,
    ErrorCode,
    ExtensionError,
    Lexer,
    code_name,
    describe,
)
from parser import CommandHandler, CommandSpec

__all__ = [
    "CommandFailure",
    "Engine",
    "EngineBusyError",
    "Environment",
    "ErrorCode",
    "TraceLogger",
    "TracebackFormatter",
    "bind_arguments",
    "describe",
    "resolve_variable",
]

CompletionCallback = Callable[[int], Any]


def normalize_name(name: str) -> str:
    # Keys keep the sigil, as variable tokens do; hosts may leave it off.
    key = name.upper()
    return key if key.startswith(VARIABLE_SIGIL) else VARIABLE_SIGIL + key


@dataclass
class Environment:
    values: Dict[str, Value] = field(default_factory=dict)

    def set(self, name: str, value: Value) -> None:
        self.values[normalize_name(name)] = value

    def get(self, name: str) -> Value:
        key = normalize_name(name)
        if key not in self.values:
            raise CommandFailure(f"Undefined variable '{name}'", code=ErrorCode.UNKNOWN_VARIABLE)
        return self.values[key]

    def get_optional(self, name: str) -> Optional[Value]:
        return self.values.get(normalize_name(name))

    def delete(self, name: str) -> None:
        key = normalize_name(name)
        if key not in self.values:
            raise CommandFailure(f"Cannot delete undefined variable '{name}'", code=ErrorCode.UNKNOWN_VARIABLE)
        del self.values[key]

    def has(self, name: str) -> bool:
        return normalize_name(name) in self.values

    def snapshot(self) -> Dict[str, str]:
        return {name: f"{value.type}:{value.value!r}" for name, value in self.values.items()}


@dataclass
class TraceEntry:
    step_index: int
    line_index: Optional[int]
    text: str
    command: str
    code: int
    env_snapshot: Optional[Dict[str, str]]


class TraceLogger:
    def __init__(self, verbose: bool, limit: Optional[int] = 1000) -> None:
        self.verbose = verbose
        # Jump loops can run forever; only the tail is kept.
        self.entries: Deque[TraceEntry] = deque(maxlen=limit)
        self.next_step_index = 0

    def record(
        self,
        *,
        line_index: Optional[int],
        text: str,
        command: str,
        code: int,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> TraceEntry:
        entry = TraceEntry(
            step_index=self.next_step_index,
            line_index=line_index,
            text=text,
            command=command,
            code=code,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_step_index += 1
        return entry

    def last_entry(self) -> Optional[TraceEntry]:
        return self.entries[-1] if self.entries else None

    def clear(self) -> None:
        self.entries.clear()
        self.next_step_index = 0


def resolve_variable(value: Value, env: Environment) -> Value:
    """Swap a variable reference (``$name``) for the value stored under it."""
    stored = env.get_optional(str(value.value))
    if stored is None:
        raise CommandFailure(
            f"Variable '{value.literal or value.value}' is not defined",
            code=ErrorCode.UNKNOWN_VARIABLE,
        )
    return stored


def bind_arguments(spec: CommandSpec, args: Sequence[Value], env: Environment) -> List[Value]:
    syntax = spec.syntax
    declared = len(syntax)
    supplied = len(args)
    bound: List[Value] = []

    for i in range(max(declared, supplied)):
        if i >= declared:
            raise CommandFailure(
                f"{spec.name} takes at most {declared} argument(s), got {supplied}",
                code=ErrorCode.TOO_MANY_ARGUMENTS,
            )
        param = syntax[i]
        if i >= supplied:
            if param.optional:
                break
            raise CommandFailure(
                f"{spec.name} needs at least {spec.min_args} argument(s), got {supplied}",
                code=ErrorCode.TOO_FEW_ARGUMENTS,
            )
        arg = args[i]
        if arg.type == TYPE_VARIABLE and not param.accepts_variable:
            arg = resolve_variable(arg, env)
        if not param.accepts(arg):
            raise CommandFailure(
                f"{spec.name} argument {i + 1} expects {param.describe()}, got {arg.type}",
                code=ErrorCode.TYPE_MISMATCH,
            )
        bound.append(arg)
    return bound


class Engine:
    def __init__(
        self,
        *,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        on_completion: Optional[CompletionCallback] = None,
        whitespace: str = WHITESPACE,
        comment: str = COMMENT,
        install_standard: bool = False,
    ) -> None:
        if not whitespace:
            raise ExtensionError("At least one whitespace character is required")
        self.verbose = verbose
        self.services = services or build_default_services()
        self.type_registry: TypeRegistry = self.services.type_registry
        self.command_registry: CommandRegistry = self.services.command_registry
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.output_sink = output_sink or (lambda text: print(text))
        self.on_completion = on_completion
        self.whitespace = whitespace
        self.comment = comment

        for spec in DEFAULT_TYPES:
            if not self.type_registry.has(spec.name):
                self.type_registry.register(spec)

        self.env = Environment()
        self.logger = TraceLogger(verbose=verbose)
        self.lexer = Lexer(self.type_registry, whitespace=whitespace, comment=comment)

        self.batch: List[str] = []
        self.cursor = 0
        self._busy = False
        self.current_index: Optional[int] = None
        self.current_text = ""
        self.last_command = ""
        self.last_args: List[Value] = []
        self.error_code: int = ErrorCode.SUCCESS
        self.last_failure: Optional[CommandFailure] = None

        if install_standard:
            from library import StandardCommands

            StandardCommands().install(self)

    # ---- registration ----
    def register_type(self, spec: TypeSpec) -> None:
        self.type_registry.register(spec)

    def register_command(
        self,
        name: str,
        syntax: Sequence[str],
        handler: CommandHandler,
        *,
        description: str = "",
        listed: bool = True,
        returns: str = "any",
    ) -> CommandSpec:
        spec = CommandSpec.build(
            name=name,
            syntax=syntax,
            handler=handler,
            description=description,
            listed=listed,
            returns=returns,
        )
        self.command_registry.register(spec)
        return spec

    def command(self, name: str, syntax: Sequence[str] = (), *, description: str = "", listed: bool = True):
        def deco(fn: CommandHandler) -> CommandHandler:
            self.register_command(name, syntax, fn, description=description or (fn.__doc__ or "").strip(), listed=listed)
            return fn

        return deco

    def listed_commands(self) -> List[str]:
        return self.command_registry.listed()

    # ---- variables ----
    def setvar(self, name: str, value: Any, type: str) -> None:
        self.env.set(name, Value(type, value))

    def getvar(self, name: str) -> Optional[Value]:
        return self.env.get_optional(name)

    def exists(self, name: str) -> bool:
        return self.env.has(name)

    def delvar(self, name: str) -> None:
        self.env.delete(name)

    # ---- state ----
    @property
    def busy(self) -> bool:
        return self._busy

    def jump(self, index: int) -> None:
        self.cursor = int(index)

    # ---- tokenize / bind / execute ----
    def interpret(self, line: str) -> int:
        if not self._busy:
            # Direct host call: no batch line to point at.
            self.current_index = None
        self.current_text = line
        self.last_command = ""
        self.last_args = []
        try:
            parsed = self.lexer.tokenize(line)
        except CommandFailure as failure:
            return self._fail(failure, line)
        self.last_command = parsed.command
        self.last_args = parsed.args
        return ErrorCode.SUCCESS

    async def execute(self) -> int:
        name = self.last_command
        if not name:
            return ErrorCode.SUCCESS
        text = self.current_text
        spec = self.command_registry.get_optional(name)
        if spec is None:
            return self._fail(CommandFailure(f"Unknown command '{name}'", code=ErrorCode.UNKNOWN_COMMAND), text)
        try:
            bound = bind_arguments(spec, self.last_args, self.env)
        except CommandFailure as failure:
            return self._fail(failure, text)

        try:
            result = spec.handler(self, *bound)
            if inspect.isawaitable(result):
                result = await result
        except CommandFailure as failure:
            return self._fail(failure, text)
        except Exception as exc:
            # Includes ExtensionError and EngineBusyError raised by host code
            # inside the handler; only hook failures escape the run.
            failure = CommandFailure(f"{name} raised {exc.__class__.__name__}: {exc}", code=ErrorCode.THROWN_ERROR)
            failure.__cause__ = exc
            return self._fail(failure, text)

        if result is None:
            return ErrorCode.SUCCESS
        if isinstance(result, bool) or not isinstance(result, int):
            return self._fail(
                CommandFailure(f"{name} returned {result!r}, expected an error code", code=ErrorCode.THROWN_ERROR),
                text,
            )
        if result != ErrorCode.SUCCESS:
            return self._fail(CommandFailure(f"{name} returned {code_name(result)}", code=result), text)
        return ErrorCode.SUCCESS

    # ---- batch runner ----
    async def run_batch(self, lines: Iterable[str]) -> int:
        self._enter()
        try:
            self.batch = list(lines)
            self.cursor = 0
            self._emit_event("batch_start", self, list(self.batch))
            code = await self._manage()
        finally:
            self._busy = False
        return self._complete(code)

    async def run_line(self, line: str) -> int:
        self._enter()
        try:
            self.batch = [line]
            self.cursor = 1
            self._emit_event("batch_start", self, [line])
            code = await self._step(0, line)
        finally:
            self._busy = False
        return self._complete(code)

    def run(self, lines: Iterable[str]) -> int:
        return asyncio.run(self.run_batch(lines))

    async def _manage(self) -> int:
        code: int = ErrorCode.SUCCESS
        # The cursor moves before the line runs so handlers can redirect it.
        while 0 <= self.cursor < len(self.batch):
            index = self.cursor
            self.cursor += 1
            code = await self._step(index, self.batch[index])
            if code:
                break
        return code

    async def _step(self, index: int, text: str) -> int:
        self.current_index = index
        self._emit_event("before_line", self, index, text)
        code = self.interpret(text)
        if code == ErrorCode.SUCCESS:
            code = await self.execute()
        self._log_step(index, text, code)
        self._emit_event("after_line", self, index, text, code)
        if code:
            self._emit_event("on_error", self, code, self.last_failure)
        return code

    def _enter(self) -> None:
        if self._busy:
            raise EngineBusyError("Unable to start a run: commands are still running")
        self._busy = True
        self.logger.clear()
        self.current_index = None
        self.last_command = ""
        self.last_args = []
        self.last_failure = None
        self.error_code = ErrorCode.SUCCESS

    def _complete(self, code: int) -> int:
        self.error_code = code
        self._emit_event("batch_end", self, code)
        if self.on_completion is not None:
            self.on_completion(code)
        return code

    def _fail(self, failure: CommandFailure, text: str) -> int:
        failure.line_index = self.current_index
        failure.text = text
        self.last_failure = failure
        return failure.code

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except CommanderError:
            raise
        except Exception as exc:
            raise ExtensionError(f"Extension hook '{event}' failed: {exc}") from exc

    def _log_step(self, index: int, text: str, code: int) -> None:
        entry = self.logger.record(
            line_index=index,
            text=text,
            command=self.last_command,
            code=code,
            env_snapshot=self.env.snapshot() if self.verbose else None,
        )
        try:
            self.hook_registry.after_step(
                self,
                StepContext(step_index=entry.step_index, line_index=index, command=self.last_command, code=code),
            )
        except CommanderError:
            raise
        except Exception as exc:
            raise ExtensionError(f"Extension step rule failed: {exc}") from exc


class TracebackFormatter:
    def __init__(self, engine: Engine, *, context: int = 5) -> None:
        self.engine = engine
        self.context = context

    def recent_steps(self) -> List[TraceEntry]:
        entries = list(self.engine.logger.entries)
        return entries[-self.context:]

    def format_text(self, failure: CommandFailure, verbose: bool = False) -> str:
        lines = ["Traceback (most recent line last):"]
        for entry in self.recent_steps():
            where = "?" if entry.line_index is None else entry.line_index + 1
            lines.append(f"  Line {where}, step {entry.step_index}: {entry.text.strip()}")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        if failure.text is not None and failure.column is not None:
            stripped = failure.text.strip()
            lines.append(f"    {stripped}")
            lines.append("    " + " " * failure.column + "^")
        lines.append(f"{code_name(failure.code)} (0x{failure.code:X}): {failure.message}")
        if failure.message != describe(failure.code):
            lines.append(f"  {describe(failure.code)}")
        return "\n".join(lines)

    def to_json(self, failure: CommandFailure) -> str:
        steps: List[Dict[str, Any]] = []
        for entry in self.recent_steps():
            item: Dict[str, Any] = {
                "step_index": entry.step_index,
                "line_index": entry.line_index,
                "text": entry.text,
                "command": entry.command,
                "code": entry.code,
            }
            if entry.env_snapshot is not None:
                item["env_snapshot"] = entry.env_snapshot
            steps.append(item)
        data = {
            "error": {
                "code": failure.code,
                "name": code_name(failure.code),
                "message": failure.message,
                "description": describe(failure.code),
                "line_index": failure.line_index,
                "column": failure.column,
                "text": failure.text,
            },
            "trace": steps,
        }
        return json.dumps(data, indent=2)
