"""Data-stream line protocol.

Each stream part is written as one line ``<code>:<json>\\n``. Responses
using it carry the ``x-vercel-ai-data-stream: v1`` header.
"""

import json
from typing import Any

from shared.models import StreamPart

STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
MEDIA_TYPE = "text/plain; charset=utf-8"

TYPE_CODES = {
    "text": "0",
    "error": "3",
    "tool-call": "9",
    "tool-result": "a",
    "finish-step": "e",
    "finish": "d",
}
CODE_TYPES = {code: part_type for part_type, code in TYPE_CODES.items()}


def _usage(usage: dict[str, int]) -> dict[str, int]:
    return {
        "promptTokens": usage.get("prompt_tokens", 0),
        "completionTokens": usage.get("completion_tokens", 0),
    }


def _value(part: StreamPart) -> Any:
    if part.type == "text":
        return part.text or ""
    if part.type == "error":
        return part.error or "An error occurred."
    if part.type == "tool-call":
        return {
            "toolCallId": part.tool_call_id,
            "toolName": part.tool_name,
            "args": part.args or {},
        }
    if part.type == "tool-result":
        return {"toolCallId": part.tool_call_id, "toolName": part.tool_name, "result": part.result}
    if part.type == "finish-step":
        return {
            "finishReason": part.finish_reason or "stop",
            "usage": _usage(part.usage),
            "isContinued": False,
        }
    return {"finishReason": part.finish_reason or "stop", "usage": _usage(part.usage)}


def encode_part(part: StreamPart) -> str:
    """Serialize one part as a protocol line."""
    return f"{TYPE_CODES[part.type]}:{json.dumps(_value(part), separators=(',', ':'))}\n"


def decode_line(line: str) -> StreamPart:
    """
    Parse one protocol line back into a part.

    Raises:
        ValueError: If the line is malformed or uses an unknown code
    """
    code, sep, payload = line.rstrip("\n").partition(":")
    if not sep or code not in CODE_TYPES:
        raise ValueError(f"Malformed stream line: {line!r}")

    part_type = CODE_TYPES[code]
    value = json.loads(payload)

    if part_type == "text":
        return StreamPart(type="text", text=value)
    if part_type == "error":
        return StreamPart(type="error", error=value)
    if part_type == "tool-call":
        return StreamPart(
            type="tool-call",
            tool_call_id=value["toolCallId"],
            tool_name=value["toolName"],
            args=value.get("args") or {},
        )
    if part_type == "tool-result":
        result = value.get("result")
        return StreamPart(
            type="tool-result",
            tool_call_id=value["toolCallId"],
            tool_name=value.get("toolName"),
            result=result,
            is_error=isinstance(result, dict) and "error" in result,
        )

    usage = value.get("usage") or {}
    return StreamPart(
        type=part_type,
        finish_reason=value.get("finishReason"),
        usage={
            "prompt_tokens": usage.get("promptTokens", 0),
            "completion_tokens": usage.get("completionTokens", 0),
        },
    )


def decode_stream(body: str) -> list[StreamPart]:
    """Parse a full response body."""
    return [decode_line(line) for line in body.splitlines() if line.strip()]
