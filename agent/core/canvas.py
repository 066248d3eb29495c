from __future__ import annotations

from typing import Optional, Tuple

from agent.core.prompt import CANVAS_END, CANVAS_START


def split_canvas(text: str) -> Tuple[str, Optional[str]]:
    """Split a model answer into its chat part and its canvas part.

    Both markers must be present with the start before the end; anything else
    leaves the whole text as chat.
    """
    start = text.find(CANVAS_START)
    if start == -1:
        return text.strip(), None
    end = text.find(CANVAS_END, start + len(CANVAS_START))
    if end == -1:
        return text.strip(), None
    chat = text[:start].strip()
    canvas = text[start + len(CANVAS_START):end].strip()
    return chat, canvas


def has_code_block(text: str) -> bool:
    return text.count("```") >= 2
