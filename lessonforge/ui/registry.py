"""Capability registry: the UI primitives lesson artifacts may reference.

Every name in ``CAPABILITIES`` is bound as a free variable inside a loaded
artifact. Adding a primitive means implementing it here and listing it in
``CAPABILITY_TAGS``; the generation prompt picks it up via
``describe_capabilities()``.
"""

import ast
import math
from types import MappingProxyType

from markupsafe import Markup, escape

from lessonforge.ui.runtime import component, h, use_state

DEFAULT_COLORS = ("#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6")


# ----------------------------------------------------------------------
# Layout
# ----------------------------------------------------------------------


@component
def Box(*children, class_name=""):
    return h("div", {"class": f"p-4 rounded-lg {class_name}".strip()}, *children)


@component
def Text(*children, class_name=""):
    return h("p", {"class": class_name or None}, *children)


@component
def Card(*children, class_name=""):
    return h(
        "div",
        {"class": f"bg-[#1a1a1a] rounded-lg border border-gray-800 p-6 {class_name}".strip()},
        *children,
    )


@component
def Stack(*children, gap=4, class_name=""):
    return h("div", {"class": f"flex flex-col gap-{gap} {class_name}".strip()}, *children)


@component
def Grid(*children, columns=2, gap=4, class_name=""):
    return h(
        "div",
        {"class": f"grid grid-cols-1 md:grid-cols-{columns} gap-{gap} {class_name}".strip()},
        *children,
    )


_CALLOUT_STYLES = {
    "info": "bg-blue-500/10 border-l-4 border-blue-500 text-blue-100",
    "warning": "bg-yellow-500/10 border-l-4 border-yellow-500 text-yellow-100",
    "success": "bg-green-500/10 border-l-4 border-green-500 text-green-100",
    "error": "bg-red-500/10 border-l-4 border-red-500 text-red-100",
}


@component
def Callout(*children, title="", type="info"):
    style = _CALLOUT_STYLES.get(type, _CALLOUT_STYLES["info"])
    return h(
        "div",
        {"class": f"p-4 rounded-md {style}", "role": "note"},
        h("strong", {"class": "block mb-1 font-semibold"}, title) if title else None,
        h("div", {"class": "opacity-90"}, *children),
    )


@component
def AnimatedCard(*children, delay=0.0, class_name=""):
    return h(
        "div",
        {
            "class": f"p-4 rounded-lg shadow-lg animate-fade-in {class_name}".strip(),
            "style": {"animation_delay": f"{float(delay)}s"},
        },
        *children,
    )


_BADGE_STYLES = {
    "default": "bg-blue-500/20 text-blue-300 border-blue-500/50",
    "success": "bg-green-500/20 text-green-300 border-green-500/50",
    "warning": "bg-yellow-500/20 text-yellow-300 border-yellow-500/50",
    "error": "bg-red-500/20 text-red-300 border-red-500/50",
}


@component
def Badge(*children, variant="default"):
    style = _BADGE_STYLES.get(variant, _BADGE_STYLES["default"])
    return h(
        "span",
        {"class": f"inline-flex items-center px-2.5 py-0.5 rounded-full text-xs font-medium border {style}"},
        *children,
    )


@component
def Progress(value=0):
    pct = min(100.0, max(0.0, float(value)))
    return h(
        "div",
        {"class": "w-full bg-gray-700 rounded-full h-2.5", "role": "progressbar",
         "aria_valuenow": f"{pct:g}"},
        h("div", {"class": "bg-blue-500 h-2.5 rounded-full", "style": {"width": f"{pct:g}%"}}),
    )


@component
def Timeline(steps=()):
    items = []
    for i, step in enumerate(steps):
        items.append(
            h(
                "div",
                {"class": "flex gap-4"},
                h("div", {"class": "w-8 h-8 rounded-full bg-blue-500 text-white text-center"}, i + 1),
                h(
                    "div",
                    {"class": "pb-8"},
                    h("h3", {"class": "font-semibold text-lg text-white mb-1"}, step.get("title", "")),
                    h("p", {"class": "text-gray-400"}, step.get("desc", "")),
                ),
            )
        )
    return h("div", {"class": "space-y-4"}, items)


@component
def CodeBlock(code="", language="python"):
    return h(
        "pre",
        {"class": "rounded-lg bg-[#1e1e1e] text-gray-100 p-4 overflow-x-auto border border-gray-800"},
        h("code", {"class": f"text-sm language-{language}"}, code),
    )


# ----------------------------------------------------------------------
# Chart
# ----------------------------------------------------------------------


def _scale(value, lo, hi, out_lo, out_hi):
    if hi == lo:
        return (out_lo + out_hi) / 2
    return out_lo + (value - lo) * (out_hi - out_lo) / (hi - lo)


@component
def Graph(data=(), x_key="x", y_key="y", type="line", height=300, width=600, colors=DEFAULT_COLORS):
    """Line, bar or pie chart rendered as inline SVG."""
    rows = list(data)
    if not rows:
        return h("div", {"class": "text-sm text-gray-500"}, "No data")

    labels = [str(row.get(x_key, i)) for i, row in enumerate(rows)]
    values = [float(row.get(y_key, 0) or 0) for row in rows]
    pad = 32
    svg_props = {"width": "100%", "height": height, "viewBox": f"0 0 {width} {height}",
                 "role": "img", "data_chart": type}

    if type == "pie":
        total = sum(v for v in values if v > 0) or 1.0
        cx, cy, r = width / 2, height / 2, min(width, height) / 2 - pad
        angle = -math.pi / 2
        slices = []
        for i, v in enumerate(values):
            sweep = 2 * math.pi * max(v, 0) / total
            x1, y1 = cx + r * math.cos(angle), cy + r * math.sin(angle)
            angle += sweep
            x2, y2 = cx + r * math.cos(angle), cy + r * math.sin(angle)
            large = 1 if sweep > math.pi else 0
            path = f"M{cx:.1f},{cy:.1f} L{x1:.1f},{y1:.1f} A{r:.1f},{r:.1f} 0 {large} 1 {x2:.1f},{y2:.1f} Z"
            slices.append(h("path", {"d": path, "fill": colors[i % len(colors)]},
                            h("title", None, f"{labels[i]}: {values[i]:g}")))
        return h("svg", svg_props, slices)

    lo, hi = min(0.0, min(values)), max(values)
    step = (width - 2 * pad) / max(len(values), 1)
    axes = [
        h("line", {"x1": pad, "y1": height - pad, "x2": width - pad, "y2": height - pad, "stroke": "#6b7280"}),
        h("line", {"x1": pad, "y1": pad, "x2": pad, "y2": height - pad, "stroke": "#6b7280"}),
    ]
    ticks = [
        h("text", {"x": pad + step * (i + 0.5), "y": height - pad / 3, "fill": "#9ca3af",
                   "fontSize": 12, "textAnchor": "middle"}, label)
        for i, label in enumerate(labels)
    ]

    if type == "bar":
        zero = _scale(0, lo, hi, height - pad, pad)
        marks = []
        for i, v in enumerate(values):
            y = _scale(v, lo, hi, height - pad, pad)
            marks.append(h("rect", {"x": f"{pad + step * i + step * 0.15:.1f}", "y": f"{min(y, zero):.1f}",
                                    "width": f"{step * 0.7:.1f}", "height": f"{abs(zero - y):.1f}",
                                    "fill": colors[0]}))
        return h("svg", svg_props, axes, marks, ticks)

    points = " ".join(
        f"{pad + step * (i + 0.5):.1f},{_scale(v, lo, hi, height - pad, pad):.1f}"
        for i, v in enumerate(values)
    )
    line = h("polyline", {"points": points, "fill": "none", "stroke": colors[0], "strokeWidth": 2})
    return h("svg", svg_props, axes, line, ticks)


# ----------------------------------------------------------------------
# Quiz
# ----------------------------------------------------------------------


def grade_quiz(questions, answers: dict) -> int:
    """Number of questions whose chosen option equals the correct one."""
    return sum(1 for q in questions if answers.get(q["id"]) == q["correct"])


@component
def Quiz(questions=(), on_complete=None):
    answers, set_answers = use_state(dict)
    submitted, set_submitted = use_state(False)
    questions = list(questions)

    def choose(question_id, option):
        set_answers(lambda prev: {**prev, question_id: option})

    def submit(*_):
        score = grade_quiz(questions, answers)
        set_submitted(True)
        if on_complete:
            on_complete(score)

    if submitted:
        return h(
            "div",
            {"class": "p-4 rounded bg-green-500/10 border border-green-500", "data_quiz": "complete"},
            h("h2", {"class": "font-bold mb-2 text-white"}, "Quiz Complete!"),
            h("p", {"class": "text-gray-300"}, f"Your score: {grade_quiz(questions, answers)} / {len(questions)}"),
        )

    blocks = []
    for q in questions:
        options = [
            h(
                "label",
                {"class": "block text-gray-300"},
                h("input", {
                    "type": "radio",
                    "name": f"q-{q['id']}",
                    "value": option,
                    "checked": answers.get(q["id"]) == option,
                    "on_change": lambda *_, qid=q["id"], opt=option: choose(qid, opt),
                }),
                h("span", {"class": "ml-2"}, option),
            )
            for option in q.get("options", [])
        ]
        blocks.append(
            h(
                "div",
                {"class": "p-4 border border-gray-800 rounded"},
                h("h3", {"class": "font-semibold mb-2 text-white"}, f"{q['id']}. {q['question']}"),
                options,
            )
        )
    return h(
        "div",
        {"class": "space-y-6", "data_quiz": "open"},
        blocks,
        h("button", {"class": "px-4 py-2 bg-blue-600 text-white rounded", "on_click": submit}, "Submit"),
    )


# ----------------------------------------------------------------------
# Formula and calculator
# ----------------------------------------------------------------------


@component
def MathFormula(tex=""):
    # Typeset client-side by KaTeX auto-render
    return h("span", {"class": "math text-white my-2", "data_tex": tex}, Markup("\\(") + escape(tex) + Markup("\\)"))


_MATH_FUNCS = {
    name: getattr(math, name)
    for name in ("sqrt", "sin", "cos", "tan", "asin", "acos", "atan", "atan2",
                 "log", "log10", "exp", "radians", "degrees", "floor", "ceil", "hypot")
}
_MATH_FUNCS.update({"abs": abs, "round": round, "min": min, "max": max, "pow": pow})
_MATH_CONSTS = {"pi": math.pi, "e": math.e, "tau": math.tau}

_BIN_OPS = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
    ast.FloorDiv: lambda a, b: a // b,
    ast.Mod: lambda a, b: a % b,
    ast.Pow: lambda a, b: a ** b,
}


def evaluate_formula(formula: str, values: dict) -> float:
    """Evaluate an arithmetic formula over named inputs without ``eval``.

    Raises:
        ValueError: For unknown names or unsupported syntax.
    """
    try:
        tree = ast.parse(formula.replace("^", "**"), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid formula: {formula}") from e

    def ev(node):
        if isinstance(node, ast.Expression):
            return ev(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return node.value
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.UAdd, ast.USub)):
            operand = ev(node.operand)
            return -operand if isinstance(node.op, ast.USub) else operand
        if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
            return _BIN_OPS[type(node.op)](ev(node.left), ev(node.right))
        if isinstance(node, ast.Name):
            if node.id in values:
                return float(values[node.id])
            if node.id in _MATH_CONSTS:
                return _MATH_CONSTS[node.id]
            raise ValueError(f"Unknown name in formula: {node.id}")
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) \
                and node.value.id in ("math", "Math"):
            if node.attr in _MATH_CONSTS:
                return _MATH_CONSTS[node.attr]
            if node.attr.upper() in ("PI", "E"):
                return _MATH_CONSTS[node.attr.lower()]
        if isinstance(node, ast.Call) and not node.keywords:
            func = node.func
            name = func.attr if isinstance(func, ast.Attribute) else getattr(func, "id", None)
            if name in _MATH_FUNCS:
                return _MATH_FUNCS[name](*(ev(arg) for arg in node.args))
        raise ValueError(f"Unsupported expression in formula: {ast.dump(node)[:60]}")

    return ev(tree)


@component
def Calculator(formula="", inputs=(), on_result=None):
    values, set_values = use_state(dict)
    result, set_result = use_state(None)
    inputs = list(inputs)

    def compute(*_):
        try:
            args = {i["name"]: float(values.get(i["name"]) or 0) for i in inputs}
            value = evaluate_formula(formula, args)
        except (ValueError, ZeroDivisionError, OverflowError) as e:
            set_result(f"Error: {e}")
            return
        set_result(value)
        if on_result:
            on_result(value)

    fields = [
        h(
            "div",
            None,
            h("label", {"class": "block text-sm font-medium text-gray-400"}, item.get("label", item["name"])),
            h("input", {
                "type": item.get("type", "number"),
                "name": item["name"],
                "value": values.get(item["name"]),
                "class": "bg-[#1e1e1e] border border-gray-700 text-white p-2 rounded w-full",
                "on_input": lambda v, name=item["name"]: set_values(lambda prev: {**prev, name: v}),
            }),
        )
        for item in inputs
    ]
    shown = None
    if result is not None:
        shown = h("div", {"class": "text-2xl font-bold text-blue-400", "data_result": "1"},
                  result if isinstance(result, str) else f"{result:g}")
    return h(
        "div",
        {"class": "p-4 border border-gray-800 rounded space-y-4 bg-[#121212]"},
        h("h2", {"class": "font-medium text-white"}, formula),
        fields,
        h("button", {"class": "px-4 py-2 bg-green-600 text-white rounded", "on_click": compute}, "Compute"),
        shown,
    )


# ----------------------------------------------------------------------
# Diagram
# ----------------------------------------------------------------------


@component
def Mermaid(chart=""):
    return h(
        "pre",
        {"class": "mermaid flex justify-center p-4 bg-[#0a0a0a] rounded-lg border border-gray-800"},
        chart.strip(),
    )


@component
def SVGCanvas(*children, width=600, height=300):
    return h("svg", {"width": width, "height": height, "viewBox": f"0 0 {width} {height}",
                     "class": "mx-auto"}, *children)


CAPABILITY_TAGS = MappingProxyType({
    "layout": ("Box", "Text", "Card", "Stack", "Grid", "Callout", "AnimatedCard",
               "Badge", "Progress", "Timeline", "CodeBlock"),
    "chart": ("Graph",),
    "quiz": ("Quiz",),
    "formula": ("MathFormula", "Math"),
    "calculator": ("Calculator",),
    "diagram": ("Mermaid", "SVGCanvas"),
})

CAPABILITIES = MappingProxyType({
    "Box": Box,
    "Text": Text,
    "Card": Card,
    "Stack": Stack,
    "Grid": Grid,
    "Callout": Callout,
    "AnimatedCard": AnimatedCard,
    "Badge": Badge,
    "Progress": Progress,
    "Timeline": Timeline,
    "CodeBlock": CodeBlock,
    "Graph": Graph,
    "Quiz": Quiz,
    "MathFormula": MathFormula,
    "Math": MathFormula,
    "Calculator": Calculator,
    "Mermaid": Mermaid,
    "SVGCanvas": SVGCanvas,
})

_USAGE = {
    "Box": "Box(*children, class_name='')",
    "Text": "Text(*children, class_name='')",
    "Card": "Card(*children, class_name='')  # dark card with border",
    "Stack": "Stack(*children, gap=4)",
    "Grid": "Grid(*children, columns=2, gap=4)",
    "Callout": "Callout(*children, title='...', type='info|warning|success|error')",
    "AnimatedCard": "AnimatedCard(*children, delay=0.2)",
    "Badge": "Badge('Text', variant='default|success|warning|error')",
    "Progress": "Progress(value=75)",
    "Timeline": "Timeline(steps=[{'title': '...', 'desc': '...'}])",
    "CodeBlock": "CodeBlock(code='...', language='python')",
    "Graph": "Graph(data=[{'x': 0, 'y': 1}], x_key='x', y_key='y', type='line|bar|pie', height=300)",
    "Quiz": "Quiz(questions=[{'id': 1, 'question': '...', 'options': ['a', 'b'], 'correct': 'a'}], on_complete=fn)",
    "MathFormula": "MathFormula(tex='x^2 + y^2 = z^2')",
    "Math": "Math(tex='...')  # alias of MathFormula",
    "Calculator": "Calculator(formula='m * a', inputs=[{'name': 'm', 'label': 'Mass'}], on_result=fn)",
    "Mermaid": "Mermaid(chart='graph TD; A-->B;')",
    "SVGCanvas": "SVGCanvas(*children, width=600, height=300)",
}


def describe_capabilities() -> str:
    """Human-readable catalog of the registry for generation prompts."""
    lines = []
    for tag, names in CAPABILITY_TAGS.items():
        lines.append(f"{tag}:")
        lines.extend(f"  - {_USAGE[name]}" for name in names)
    return "\n".join(lines)
