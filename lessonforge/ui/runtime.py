"""Base UI runtime for lesson components.

Components are plain functions returning an element tree built with ``h`` or
the ``html`` tag namespace. Hook state lives in a ``Renderer`` and is keyed by
the component's position in the tree, so re-rendering after a state setter
runs sees the updated values.
"""

import re
from contextvars import ContextVar
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable

from markupsafe import Markup, escape

VOID_TAGS = frozenset(
    "area base br col embed hr img input link meta source track wbr".split()
)

ATTR_ALIASES = {
    "className": "class",
    "class_name": "class",
    "class_": "class",
    "htmlFor": "for",
    "html_for": "for",
    "viewBox": "viewBox",
    "strokeWidth": "stroke-width",
    "strokeDasharray": "stroke-dasharray",
    "strokeLinecap": "stroke-linecap",
    "fontSize": "font-size",
    "fontWeight": "font-weight",
    "textAnchor": "text-anchor",
    "fillOpacity": "fill-opacity",
    "dominantBaseline": "dominant-baseline",
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass
class Element:
    tag: str | Callable
    props: dict = field(default_factory=dict)
    children: tuple = ()

    @property
    def name(self) -> str:
        if isinstance(self.tag, str):
            return self.tag
        return getattr(self.tag, "__name__", "component")


def h(tag, props=None, *children, **kwargs) -> Element:
    """Create an element. ``props`` may be omitted and the first child given instead."""
    if props is not None and not isinstance(props, dict):
        children = (props, *children)
        props = None
    merged = dict(props or {})
    merged.update(kwargs)
    return Element(tag, merged, tuple(children))


def fragment(*children) -> Element:
    return Element("", {}, tuple(children))


def component(fn: Callable) -> Callable:
    """Make calls to ``fn`` produce an element rendered with its own hook state."""

    @wraps(fn)
    def wrapper(*children, **props):
        return Element(fn, props, children)

    wrapper.render = fn
    return wrapper


class _HtmlTags:
    """``html.div(props?, *children)`` style tag factories."""

    def __getattr__(self, name: str) -> Callable[..., Element]:
        if name.startswith("__"):
            raise AttributeError(name)
        tag = name.rstrip("_").replace("_", "-")

        def factory(props=None, *children, **kwargs):
            return h(tag, props, *children, **kwargs)

        factory.__name__ = tag
        return factory


html = _HtmlTags()


# ----------------------------------------------------------------------
# Hooks
# ----------------------------------------------------------------------


class _StateSlot:
    def __init__(self, renderer: "Renderer", value: Any):
        self._renderer = renderer
        self.value = value

    def set(self, value) -> None:
        new = value(self.value) if callable(value) else value
        if new != self.value:
            self.value = new
            self._renderer.dirty = True


class Ref:
    def __init__(self, current=None):
        self.current = current

    def __repr__(self) -> str:
        return f"Ref({self.current!r})"


@dataclass
class _EffectSlot:
    deps: tuple | None = None
    cleanup: Callable | None = None
    pending: Callable | None = None


@dataclass
class _HookFrame:
    renderer: "Renderer"
    slots: list = field(default_factory=list)
    index: int = 0

    def next_slot(self, factory: Callable[[], Any]):
        if self.index == len(self.slots):
            self.slots.append(factory())
        slot = self.slots[self.index]
        self.index += 1
        return slot


_current_frame: ContextVar[_HookFrame | None] = ContextVar("lesson_hook_frame", default=None)


def _frame() -> _HookFrame:
    frame = _current_frame.get()
    if frame is None:
        raise RuntimeError("Hooks can only be called while a component is rendering")
    return frame


def use_state(initial=None):
    """Return ``(value, set_value)``; the setter accepts a value or an updater."""
    frame = _frame()
    slot = frame.next_slot(
        lambda: _StateSlot(frame.renderer, initial() if callable(initial) else initial)
    )
    return slot.value, slot.set


def use_ref(initial=None) -> Ref:
    return _frame().next_slot(lambda: Ref(initial))


def use_memo(compute: Callable, deps=None):
    slot = _frame().next_slot(lambda: {"deps": object(), "value": None})
    key = tuple(deps) if deps is not None else None
    if key is None or key != slot["deps"]:
        slot["value"] = compute()
        slot["deps"] = key
    return slot["value"]


def use_callback(fn: Callable, deps=None) -> Callable:
    return use_memo(lambda: fn, deps)


def use_effect(effect: Callable, deps=None) -> None:
    """Schedule ``effect``; it runs on ``Renderer.flush_effects``, not during render."""
    frame = _frame()
    slot = frame.next_slot(_EffectSlot)
    key = tuple(deps) if deps is not None else None
    if key is None or key != slot.deps:
        slot.pending = effect
        slot.deps = key
        frame.renderer._scheduled.append(slot)


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------


def css_text(style: dict) -> str:
    return "; ".join(
        f"{_CAMEL_RE.sub('-', str(k)).lower().replace('_', '-')}: {v}"
        for k, v in style.items()
        if v is not None
    )


def render_attrs(props: dict, bind: Callable[[Callable], str] | None = None) -> str:
    """Serialize props as HTML attributes.

    Event handlers are not serializable; when ``bind`` is given each one is
    registered and referenced by id in a ``data-on-<event>`` attribute.
    """
    parts = []
    for key, value in props.items():
        if key in ("children", "key"):
            continue
        name = ATTR_ALIASES.get(key, key.replace("_", "-"))
        if callable(value):
            if name.startswith("on"):
                event = name[2:].lstrip("-").lower()
                handler_id = bind(value) if bind else "1"
                parts.append(f' data-on-{event}="{handler_id}"')
            continue
        if value is None or value is False:
            continue
        if value is True:
            parts.append(f" {name}")
            continue
        if name == "style" and isinstance(value, dict):
            value = css_text(value)
        parts.append(f' {name}="{escape(value)}"')
    return "".join(parts)


class Renderer:
    """Renders a component tree to HTML, keeping hook state between renders."""

    def __init__(self, root):
        self.root = root if isinstance(root, Element) else Element(root)
        self.dirty = False
        self._frames: dict[tuple, _HookFrame] = {}
        self._scheduled: list[_EffectSlot] = []
        self.handlers: dict[str, Callable] = {}

    def render(self) -> str:
        self.dirty = False
        self._scheduled = []
        self.handlers = {}
        return self._render(self.root, ())

    def dispatch(self, handler_id: str, *args) -> bool:
        """Invoke an event handler from the last render; True if state changed."""
        handler = self.handlers.get(handler_id)
        if handler is None:
            raise KeyError(f"Unknown handler: {handler_id}")
        handler(*args)
        return self.dirty

    def _bind(self, handler: Callable) -> str:
        handler_id = f"h{len(self.handlers)}"
        self.handlers[handler_id] = handler
        return handler_id

    def flush_effects(self) -> int:
        """Run effects scheduled by the last render; returns how many ran."""
        ran = 0
        for slot in self._scheduled:
            if slot.cleanup:
                slot.cleanup()
            effect, slot.pending = slot.pending, None
            result = effect()
            slot.cleanup = result if callable(result) else None
            ran += 1
        self._scheduled = []
        return ran

    def _render(self, node, path: tuple) -> str:
        if node is None or isinstance(node, bool):
            return ""
        if isinstance(node, Markup):
            return str(node)
        if isinstance(node, (str, int, float)):
            return str(escape(str(node)))
        if isinstance(node, (list, tuple)) or _is_iterator(node):
            return "".join(self._render(child, path + (i,)) for i, child in enumerate(node))
        if isinstance(node, Element):
            if callable(node.tag):
                return self._render_component(node, path)
            return self._render_tag(node, path)
        return str(escape(str(node)))

    def _render_component(self, node: Element, path: tuple) -> str:
        key = path + (node.name,)
        frame = self._frames.get(key)
        if frame is None:
            frame = self._frames[key] = _HookFrame(self)
        frame.index = 0

        fn = getattr(node.tag, "render", node.tag)
        token = _current_frame.set(frame)
        try:
            output = fn(*node.children, **node.props)
        finally:
            _current_frame.reset(token)
        return self._render(output, key)

    def _render_tag(self, node: Element, path: tuple) -> str:
        inner = "".join(
            self._render(child, path + (i,)) for i, child in enumerate(node.children)
        )
        if not node.tag:
            return inner
        attrs = render_attrs(node.props, bind=self._bind)
        if node.tag in VOID_TAGS:
            return f"<{node.tag}{attrs}>"
        return f"<{node.tag}{attrs}>{inner}</{node.tag}>"


def _is_iterator(node) -> bool:
    return hasattr(node, "__next__") and hasattr(node, "__iter__")


def render_to_html(node) -> str:
    """One-shot render of an element, component function, or plain value."""
    if callable(node) and not isinstance(node, Element):
        return Renderer(node).render()
    return Renderer(fragment(node)).render()


# Names bound into every loaded lesson artifact
RUNTIME_EXPORTS = (
    "Element",
    "h",
    "html",
    "fragment",
    "component",
    "use_state",
    "use_effect",
    "use_memo",
    "use_callback",
    "use_ref",
)
