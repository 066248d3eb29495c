from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Optional

from agent.core.memory import Memory, estimate_tokens
from agent.core.prompt import AUTO_MEMORY_TEMPLATE
from agent.errors import ChatError
from agent.tools.gemini import GeminiClient, extract_json_segment, strip_code_fences


logger = logging.getLogger(__name__)

MAX_TOPICS = 3


def parse_memory(raw: str, now_ms: Optional[int] = None) -> Optional[Memory]:
    """Build a memory from the first JSON object in ``raw``; ``None`` if unusable."""
    segment = extract_json_segment(strip_code_fences(raw))
    if not segment:
        return None
    try:
        data = json.loads(segment)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    topics = data.get("topics") or []
    if not isinstance(topics, list):
        topics = []
    topics = [str(t).strip() for t in topics if str(t).strip()][:MAX_TOPICS]

    text = text.strip()
    return Memory(
        id=str(uuid.uuid4()),
        text=text,
        topics=topics,
        token_count=estimate_tokens(text),
        last_accessed=now_ms if now_ms is not None else int(time.time() * 1000),
    )


def generate_memory(
    client: GeminiClient, prompt: str, answer: str, model: Optional[str] = None
) -> Optional[Memory]:
    """Ask the model to summarise the exchange. Never raises."""
    request = AUTO_MEMORY_TEMPLATE.format(prompt=prompt, answer=answer)
    try:
        raw = client.generate(request, model=model)
    except ChatError as exc:
        logger.warning("Auto-memory generation failed: %s", exc.message)
        return None
    except Exception:
        logger.warning("Auto-memory generation failed unexpectedly", exc_info=True)
        return None

    memory = parse_memory(raw)
    if memory is None:
        logger.warning("Auto-memory reply had no usable JSON: %s", raw[:200])
    return memory
