from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from grammar import DEFAULT_TYPES, TypeSpec
from lexer import ExtensionError
from parser import CommandHandler, CommandSpec


EXTENSION_API_VERSION = 1
POINTER_SUFFIX = ".cmdx"
BUILTIN_EXT_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ext")


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# ---- Types ----

@dataclass
class TypeRegistry:
    _types: List[TypeSpec] = field(default_factory=list)

    def register(self, spec: TypeSpec) -> None:
        name = spec.name
        if not name or not isinstance(name, str):
            raise ExtensionError("Type name must be a non-empty string")
        priority = spec.priority
        if priority is None:
            self._types.append(spec)
            return
        if priority < 0:
            raise ExtensionError(f"Type '{name}' has negative priority {priority}; use None for 'lowest'")
        # Before the first entry that is unprioritised or strictly lower
        # priority, which keeps equal priorities in registration order.
        for index, existing in enumerate(self._types):
            if existing.priority is None or existing.priority > priority:
                self._types.insert(index, spec)
                return
        self._types.append(spec)

    def __iter__(self) -> Iterator[TypeSpec]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def has(self, name: str) -> bool:
        return any(spec.name == name for spec in self._types)

    def get_optional(self, name: str) -> Optional[TypeSpec]:
        for spec in self._types:
            if spec.name == name:
                return spec
        return None

    def names(self) -> List[str]:
        return [spec.name for spec in self._types]


# ---- Commands ----

@dataclass
class CommandRegistry:
    _commands: Dict[str, CommandSpec] = field(default_factory=dict)

    def register(self, spec: CommandSpec) -> None:
        self._commands[spec.name.upper()] = spec

    def has(self, name: str) -> bool:
        return name.upper() in self._commands

    def get(self, name: str) -> CommandSpec:
        try:
            return self._commands[name.upper()]
        except KeyError:
            raise ExtensionError(f"Unknown command '{name}'")

    def get_optional(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get(name.upper())

    def listed(self) -> List[str]:
        return [name for name, spec in self._commands.items() if spec.listed]

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)


# ---- Hooks ----

EVENTS = ("batch_start", "before_line", "after_line", "on_error", "batch_end")


@dataclass(frozen=True)
class StepContext:
    step_index: int
    line_index: int
    command: str
    code: int


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, ext_name, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise ExtensionError(f"Unknown hook event '{event}' (expected one of {', '.join(EVENTS)})")
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise ExtensionError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, ext_name, name))

    def after_step(self, engine: Any, ctx: StepContext) -> None:
        for every_n, handler, _ext, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(engine, ctx)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    type_registry: TypeRegistry = field(default_factory=TypeRegistry)
    command_registry: CommandRegistry = field(default_factory=CommandRegistry)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    @property
    def name(self) -> str:
        return self._ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- types ----
    def register_type(
        self,
        name: str,
        *,
        begin: Callable[..., bool],
        end: Callable[..., bool],
        parse: Callable[[str], Any],
        priority: Optional[int] = None,
    ) -> TypeSpec:
        spec = TypeSpec(name=name, begin=begin, end=end, parse=parse, priority=priority)
        self._services.type_registry.register(spec)
        return spec

    # ---- commands ----
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
        self._services.command_registry.register(spec)
        return spec

    def command(self, name: str, syntax: Sequence[str] = (), *, description: str = "", listed: bool = True):
        def deco(fn: CommandHandler) -> CommandHandler:
            self.register_command(name, syntax, fn, description=description or (fn.__doc__ or "").strip(), listed=listed)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self._services.hook_registry.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"commander_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise ExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_cmdx(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise ExtensionError(f"{POINTER_SUFFIX} file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            # Allow inline comments: path # comment
            if "#" in line:
                line = line.split("#", 1)[0].strip()
                if not line:
                    continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def resolve_builtin_ext(name: str) -> Optional[str]:
    """Map a bare extension name (``tensor``) onto the bundled ext/ directory."""
    filename = name if name.endswith(".py") else f"{name}.py"
    candidate = os.path.join(BUILTIN_EXT_DIR, filename)
    return candidate if os.path.exists(candidate) else None


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        if p.lower().endswith(POINTER_SUFFIX):
            expanded.extend(read_cmdx(p))
        elif not os.path.exists(p) and resolve_builtin_ext(p) is not None:
            expanded.append(resolve_builtin_ext(p))  # type: ignore[arg-type]
        else:
            expanded.append(p)
    # normalize
    return [os.path.abspath(p) for p in expanded]


def register_extension(services: RuntimeServices, path: str) -> str:
    module = load_extension_module(path)
    api_version = getattr(module, "COMMANDER_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise ExtensionError(
            f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "commander_register", None)
    if register is None or not callable(register):
        raise ExtensionError(f"Extension {path} must define callable commander_register(ext)")
    ext_name = str(getattr(module, "COMMANDER_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0]))
    register(ExtensionAPI(services=services, ext_name=ext_name))
    return ext_name


def build_default_services() -> RuntimeServices:
    services = RuntimeServices()
    for spec in DEFAULT_TYPES:
        services.type_registry.register(spec)
    return services


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in gather_extension_paths(paths):
        register_extension(services, path)
    return services
