"""Claude API service wrapper with bounded tool use and dry-run support."""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

# Claude Sonnet 4 pricing (per million tokens)
SONNET_INPUT_PRICE_PER_M = 3.0
SONNET_OUTPUT_PRICE_PER_M = 15.0

DRY_RUN_TEXT = "[DRY RUN - no API call made]"


@dataclass
class ClaudeResponse:
    """Parsed response from Claude API."""

    text: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    model: str
    steps: int = 1
    tool_calls: list[str] = field(default_factory=list)


@dataclass
class Tool:
    """A tool the model may call; ``handler(tool_input, settings)`` returns text."""

    name: str
    description: str
    input_schema: dict
    handler: Callable[[dict, object], str]

    def to_api(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    """Calculate estimated cost in USD for a Claude API call."""
    input_cost = (input_tokens / 1_000_000) * SONNET_INPUT_PRICE_PER_M
    output_cost = (output_tokens / 1_000_000) * SONNET_OUTPUT_PRICE_PER_M
    return round(input_cost + output_cost, 6)


def compute_prompt_hash(
    system_prompt: str,
    user_message: str,
    model: str,
    temperature: float,
) -> str:
    """SHA256 hash of prompt components, recorded in generation reports."""
    payload = f"{system_prompt}|{user_message}|{model}|{temperature}"
    return hashlib.sha256(payload.encode()).hexdigest()


def _text_of(content) -> str:
    return "".join(block.text for block in content if block.type == "text")


def _run_tools(content, tools: dict[str, Tool], settings) -> list[dict]:
    results = []
    for block in content:
        if block.type != "tool_use":
            continue
        tool = tools.get(block.name)
        if tool is None:
            output, is_error = f"Unknown tool: {block.name}", True
        else:
            try:
                output, is_error = tool.handler(block.input, settings), False
            except Exception as e:
                # Reported back to the model, which decides how to continue
                logger.warning("Tool %s failed: %s", block.name, e)
                output, is_error = f"Tool error: {e}", True
        results.append({
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": output,
            "is_error": is_error,
        })
    return results


def call_claude(
    system_prompt: str,
    user_message: str,
    settings,
    tools: list[Tool] | None = None,
    dry_run_path: Path | None = None,
    model: str | None = None,
) -> ClaudeResponse:
    """Call Claude Messages API, running tool round trips until a final answer.

    Args:
        system_prompt: System-level instructions.
        user_message: User message content.
        settings: Application settings (needs anthropic_api_key, claude_model, etc.).
        tools: Tools the model may call. At most ``settings.claude_max_steps``
            requests are made; if the budget runs out mid tool use the returned
            text is empty.
        dry_run_path: If settings.dry_run, write payload here instead of calling API.
        model: Overrides ``settings.claude_model``.

    Returns:
        ClaudeResponse with the concluding text, token counts, and cost.
    """
    model = model or settings.claude_model
    if settings.dry_run:
        return write_dry_run(system_prompt, user_message, settings, dry_run_path, model)

    from anthropic import Anthropic

    client = Anthropic(
        api_key=settings.anthropic_api_key,
        max_retries=settings.max_retries,
    )

    by_name = {tool.name: tool for tool in tools or []}
    extra = {"tools": [tool.to_api() for tool in tools]} if tools else {}
    messages: list[dict] = [{"role": "user", "content": user_message}]
    input_tokens = output_tokens = 0
    tool_calls: list[str] = []
    steps = 0
    text = ""

    while True:
        steps += 1
        response = client.messages.create(
            model=model,
            max_tokens=settings.claude_max_tokens,
            temperature=settings.claude_temperature,
            system=system_prompt,
            messages=messages,
            **extra,
        )
        input_tokens += response.usage.input_tokens
        output_tokens += response.usage.output_tokens

        if response.stop_reason != "tool_use" or not by_name:
            text = _text_of(response.content)
            break
        if steps >= settings.claude_max_steps:
            logger.warning(
                "Tool step budget exhausted after %d steps without a final answer", steps
            )
            text = ""
            break

        tool_calls.extend(b.name for b in response.content if b.type == "tool_use")
        messages.append({"role": "assistant", "content": response.content})
        messages.append({"role": "user", "content": _run_tools(response.content, by_name, settings)})

    cost = calculate_cost(input_tokens, output_tokens)
    logger.info(
        "Claude call: %d in / %d out tokens, $%.4f (%s, %d steps)",
        input_tokens, output_tokens, cost, model, steps,
    )

    return ClaudeResponse(
        text=text,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=cost,
        model=model,
        steps=steps,
        tool_calls=tool_calls,
    )


def write_dry_run(
    system_prompt: str,
    user_message: str,
    settings,
    output_path: Path | None,
    model: str,
) -> ClaudeResponse:
    """Write request payload as JSON without calling API."""
    payload = {
        "model": model,
        "max_tokens": settings.claude_max_tokens,
        "temperature": settings.claude_temperature,
        "system": system_prompt,
        "messages": [{"role": "user", "content": user_message}],
        "dry_run": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8"
        )
        logger.info("Dry-run payload written: %s", output_path)

    return ClaudeResponse(
        text=DRY_RUN_TEXT,
        input_tokens=0,
        output_tokens=0,
        cost_usd=0.0,
        model=model,
        steps=0,
    )


# ----------------------------------------------------------------------
# Auxiliary diagram tool
# ----------------------------------------------------------------------

DIAGRAM_SYSTEM_PROMPT = """\
You write Mermaid diagram source. Answer with the diagram source only, no
markdown fences and no explanation. Use short node labels.
"""


def generate_diagram(tool_input: dict, settings) -> str:
    """Turn a diagram description into Mermaid source with a second model call."""
    description = str(tool_input.get("description", "")).strip()
    if not description:
        raise ValueError("description is required")
    kind = tool_input.get("kind") or "flowchart"
    response = call_claude(
        DIAGRAM_SYSTEM_PROMPT,
        f"Diagram type: {kind}\nDescribe: {description}",
        settings,
        model=settings.diagram_model,
    )
    lines = [line for line in response.text.strip().splitlines() if not line.strip().startswith("```")]
    return "\n".join(lines).strip()


DIAGRAM_TOOL = Tool(
    name="generate_diagram",
    description=(
        "Generate Mermaid diagram source for a process, hierarchy or sequence. "
        "Embed the result with Mermaid(chart=...)."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "description": {"type": "string", "description": "What the diagram should show"},
            "kind": {
                "type": "string",
                "enum": ["flowchart", "sequence", "class", "state", "mindmap"],
            },
        },
        "required": ["description"],
    },
    handler=generate_diagram,
)

LESSON_TOOLS = [DIAGRAM_TOOL]
