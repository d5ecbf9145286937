"""Fetch a compiled lesson artifact and turn it into a renderable component.

The artifact is executed once inside a transient module that is never
registered in ``sys.modules``. Before execution the body is wrapped so the
base runtime, every capability and the whitelisted stdlib modules are plain
module-level names; imports of the runtime the model may have left behind
are rewritten to those names. The rewritten lines can sit inside the
component function, so the runtime reference stays in the module globals.

This is not a security boundary. The curated builtins and the import
whitelist keep well-behaved artifacts honest, nothing more.
"""

import ast
import builtins
import logging
import socket
import types
import urllib.error
import urllib.request
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable

from lessonforge.core.errors import (
    ArtifactNotFound,
    FetchError,
    LoadError,
    RenderError,
    StoreError,
)
from lessonforge.ui import registry, runtime

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_NAME = "LessonComponent"
ALLOWED_CONTENT_TYPES = ("text/x-python", "text/plain")
RUNTIME_MODULES = frozenset(
    {"lessonforge.ui", "lessonforge.ui.runtime", "lessonforge.ui.registry", "react"}
)
# Bound into every artifact by name; also the only modules it may import
STDLIB_MODULES = ("math", "random", "statistics", "itertools", "functools", "typing", "string")
ALLOWED_IMPORTS = frozenset(STDLIB_MODULES)

_RUNTIME_VAR = "__lesson_runtime__"
_REGISTRY_VAR = "__lesson_registry__"

# camelCase spellings models carry over from JSX habits
RUNTIME_ALIASES = {
    "useState": "use_state",
    "useEffect": "use_effect",
    "useMemo": "use_memo",
    "useCallback": "use_callback",
    "useRef": "use_ref",
    "createElement": "h",
    "Fragment": "fragment",
}


class RuntimeNamespace:
    """Read-only attribute view over the runtime exports."""

    __slots__ = ("_names",)

    def __init__(self, names: dict):
        object.__setattr__(self, "_names", MappingProxyType(dict(names)))

    def __getattr__(self, name):
        try:
            return self._names[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name, value):
        raise AttributeError("lesson runtime is read-only")

    def __delattr__(self, name):
        raise AttributeError("lesson runtime is read-only")

    def __dir__(self):
        return list(self._names)

    def __iter__(self):
        return iter(self._names)


def _runtime_names() -> dict:
    names = {name: getattr(runtime, name) for name in runtime.RUNTIME_EXPORTS}
    names["Markup"] = runtime.Markup
    for alias, target in RUNTIME_ALIASES.items():
        names[alias] = names[target]
    return names


RUNTIME = RuntimeNamespace(_runtime_names())


# ----------------------------------------------------------------------
# Fetch
# ----------------------------------------------------------------------


@dataclass
class FetchedArtifact:
    text: str
    content_type: str


def fetch_artifact(url: str, timeout: float = 10.0) -> FetchedArtifact:
    """GET an artifact over HTTP(S). One request, no retry.

    Raises:
        FetchError: On a non-2xx status, timeout, connection failure or an
            unexpected content type.
    """
    if not url.startswith(("http://", "https://")):
        raise FetchError(f"Unsupported artifact address: {url}")

    req = urllib.request.Request(url, headers={"User-Agent": "lessonforge/0.1"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            status = resp.status
            content_type = resp.headers.get_content_type()
            charset = resp.headers.get_content_charset() or "utf-8"
            body = resp.read()
    except urllib.error.HTTPError as e:
        raise FetchError(f"Network error: HTTP {e.code} fetching {url}") from e
    except (TimeoutError, socket.timeout) as e:
        raise FetchError(f"Network error: timed out fetching {url}") from e
    except urllib.error.URLError as e:
        raise FetchError(f"Network error: {e.reason} fetching {url}") from e

    if not 200 <= status < 300:
        raise FetchError(f"Network error: HTTP {status} fetching {url}")
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise FetchError(f"Unexpected content type {content_type!r} for {url}")
    try:
        text = body.decode(charset)
    except (LookupError, UnicodeDecodeError) as e:
        raise FetchError(f"Could not decode artifact from {url}: {e}") from e
    return FetchedArtifact(text=text, content_type=content_type)


def make_store_fetcher(store) -> Callable[[str, float], FetchedArtifact]:
    """Fetcher that reads artifacts straight from a store instead of over HTTP."""

    def fetch(url: str, timeout: float = 10.0) -> FetchedArtifact:
        lesson_id = store.lesson_id_for(url)
        if lesson_id is None:
            raise FetchError(f"Address not served by this store: {url}")
        try:
            text = store.get(lesson_id)
        except ArtifactNotFound as e:
            raise FetchError(f"Network error: HTTP 404 fetching {url}") from e
        except StoreError as e:
            raise FetchError(str(e)) from e
        return FetchedArtifact(text=text, content_type="text/x-python")

    return fetch


# ----------------------------------------------------------------------
# Wrapper synthesis
# ----------------------------------------------------------------------


class RuntimeImportRewriter(ast.NodeTransformer):
    """Turn imports of the runtime into bindings of already-present names."""

    def visit_Import(self, node: ast.Import):
        kept, bindings = [], []
        for alias in node.names:
            if alias.name not in RUNTIME_MODULES:
                kept.append(alias)
                continue
            # "import lessonforge.ui.runtime" without an alias binds nothing usable
            target = alias.asname or (alias.name if "." not in alias.name else None)
            if target:
                bindings.append(
                    ast.Assign(
                        targets=[ast.Name(target, ast.Store())],
                        value=ast.Name(_RUNTIME_VAR, ast.Load()),
                        type_comment=None,
                    )
                )
        if kept:
            node.names = kept
            bindings.insert(0, node)
        return [ast.copy_location(b, node) for b in bindings] or None

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.level or node.module not in RUNTIME_MODULES:
            return node
        bindings = []
        for alias in node.names:
            if alias.asname and alias.name != "*":
                bindings.append(
                    ast.copy_location(
                        ast.Assign(
                            targets=[ast.Name(alias.asname, ast.Store())],
                            value=ast.Name(alias.name, ast.Load()),
                            type_comment=None,
                        ),
                        node,
                    )
                )
        return bindings or None


def rewrite_runtime_imports(source: str, filename: str = "<lesson>") -> str:
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as e:
        raise LoadError(f"Artifact is not valid Python: {e}") from e
    tree = RuntimeImportRewriter().visit(tree)
    ast.fix_missing_locations(tree)
    return ast.unparse(tree)


def build_wrapper(source: str, entry_name: str = DEFAULT_ENTRY_NAME) -> tuple[str, set[str]]:
    """Wrap an artifact body; returns the wrapper text and the prelude names."""
    runtime_names = list(RUNTIME)
    registry_names = list(registry.CAPABILITIES)
    prelude = [f"import {name}" for name in STDLIB_MODULES]
    prelude += [f"{name} = {_RUNTIME_VAR}.{name}" for name in runtime_names]
    prelude += [f"{name} = {_REGISTRY_VAR}[{name!r}]" for name in registry_names]
    body = rewrite_runtime_imports(source)
    epilogue = f"try:\n    default = {entry_name}\nexcept NameError:\n    pass\n"
    wrapper = "\n".join(prelude) + "\n\n" + body + "\n\n" + epilogue
    return wrapper, set(STDLIB_MODULES) | set(runtime_names) | set(registry_names)


def _guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
    if level or name.split(".")[0] not in ALLOWED_IMPORTS:
        raise ImportError(f"import of {name!r} is not allowed in lesson artifacts")
    return builtins.__import__(name, globals, locals, fromlist, level)


SAFE_BUILTINS = MappingProxyType({
    **{
        name: getattr(builtins, name)
        for name in (
            "abs", "all", "any", "bool", "callable", "chr", "dict", "divmod",
            "enumerate", "filter", "float", "format", "frozenset", "getattr",
            "hasattr", "hash", "int", "isinstance", "issubclass", "iter", "len",
            "list", "map", "max", "min", "next", "object", "ord", "pow", "range",
            "repr", "reversed", "round", "set", "slice", "sorted", "str", "sum",
            "tuple", "zip", "property", "staticmethod", "classmethod", "super",
            "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
            "ZeroDivisionError", "AttributeError", "NameError", "ArithmeticError",
            "StopIteration", "RuntimeError", "NotImplementedError",
            "__build_class__",
        )
    },
    "True": True,
    "False": False,
    "None": None,
    "print": lambda *a, **k: None,
    "__import__": _guarded_import,
})


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------


@dataclass
class LoadedLesson:
    address: str
    component: Callable
    module_text: str

    def renderer(self) -> runtime.Renderer:
        return runtime.Renderer(self.component)

    def render(self, renderer: runtime.Renderer | None = None) -> str:
        """Render to HTML; pass a renderer to keep hook state across renders.

        Raises:
            RenderError: If the component raises while rendering.
        """
        renderer = renderer or self.renderer()
        try:
            return renderer.render()
        except Exception as e:
            raise RenderError(f"{type(e).__name__}: {e}") from e


def execute_artifact(text: str, address: str, entry_name: str = DEFAULT_ENTRY_NAME) -> Callable:
    """Execute artifact text in a transient module and return its component.

    Raises:
        LoadError: If execution fails or no component is exported.
    """
    wrapper, prelude_names = build_wrapper(text, entry_name)
    module = types.ModuleType(f"lesson_artifact_{abs(hash(address)):x}")
    namespace = module.__dict__
    namespace["__builtins__"] = dict(SAFE_BUILTINS)
    namespace[_RUNTIME_VAR] = RUNTIME
    namespace[_REGISTRY_VAR] = registry.CAPABILITIES
    try:
        code = compile(wrapper, f"<lesson {address}>", "exec")
        exec(code, namespace)
    except Exception as e:
        raise LoadError(f"Failed to load lesson module: {type(e).__name__}: {e}") from e
    finally:
        namespace.pop(_REGISTRY_VAR, None)

    component = namespace.get(entry_name) or namespace.get("default")
    if not callable(component):
        defined = sorted(
            name for name in namespace
            if not name.startswith("__") and name not in prelude_names
        )
        raise LoadError(f"No component found in module exports: {', '.join(defined) or '(none)'}")
    return component


class LessonLoader:
    """Loads lesson components from artifact addresses."""

    def __init__(
        self,
        fetch: Callable[[str, float], FetchedArtifact] | None = None,
        timeout: float = 10.0,
        entry_name: str = DEFAULT_ENTRY_NAME,
    ):
        self._fetch = fetch or fetch_artifact
        self.timeout = timeout
        self.entry_name = entry_name

    def load(self, address: str) -> LoadedLesson:
        """Fetch, wrap, execute and extract the lesson component.

        Raises:
            FetchError: The artifact could not be retrieved.
            LoadError: The artifact could not be executed or exports nothing.
        """
        fetched = self._fetch(address, self.timeout)
        component = execute_artifact(fetched.text, address, self.entry_name)
        logger.info("Loaded lesson component from %s", address)
        return LoadedLesson(address=address, component=component, module_text=fetched.text)
