"""In-band wire contract shared by the prompt, the relay, the extractor, and the widget.

Two layers:
- Model output markers: the completion token and the delimited insights
  block the model is instructed to emit inline.
- Caller framing: Server-Sent Events carrying one text delta each, in the
  Anthropic ``content_block_delta`` shape the widget already parses,
  terminated by ``data: [DONE]``. Every provider is normalized to this.

Both are treated as an untrusted boundary: nothing downstream assumes the
model actually followed the marker contract.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable

START_SENTINEL = "start"
COMPLETION_TOKEN = "[INTERVIEW_COMPLETE]"
INSIGHTS_OPEN = "[INSIGHTS]"
INSIGHTS_CLOSE = "[/INSIGHTS]"

INSIGHTS_BLOCK_RE = re.compile(r"\[INSIGHTS\]\s*([\s\S]*?)\s*\[/INSIGHTS\]")

SSE_MEDIA_TYPE = "text/event-stream"
DONE_EVENT = "data: [DONE]\n\n"


def format_delta_event(text: str) -> str:
    """Frame one text delta as an SSE event."""
    payload = {
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    }
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def parse_delta_events(raw: str) -> list[str]:
    """Extract the text deltas from a framed SSE payload.

    Malformed lines and non-delta events are skipped; parsing stops at the
    terminal marker.
    """
    deltas: list[str] = []
    for line in raw.splitlines():
        line = line.rstrip("\r")
        if not line.startswith("data: "):
            continue
        body = line[6:].strip()
        if body == "[DONE]":
            break
        try:
            event = json.loads(body)
        except ValueError:
            continue
        delta = event.get("delta") if isinstance(event, dict) else None
        if (
            isinstance(delta, dict)
            and event.get("type") == "content_block_delta"
            and delta.get("type") == "text_delta"
        ):
            deltas.append(str(delta.get("text", "")))
    return deltas


def frame_text(chunks: Iterable[str]) -> list[str]:
    """Frame a sequence of deltas, including the terminal marker."""
    return [format_delta_event(c) for c in chunks if c] + [DONE_EVENT]


def has_completion_token(text: str) -> bool:
    return COMPLETION_TOKEN in text


def visible_text(text: str) -> str:
    """What the customer should see: markers removed, insight payload hidden."""
    visible = text.replace(COMPLETION_TOKEN, "")
    start = visible.find(INSIGHTS_OPEN)
    if start != -1:
        visible = visible[:start]
    return visible.strip()
