"""Memory model and context selection.

Memories arrive with every request (the frontend owns storage) and are
ranked against the prompt by keyword overlap. The best ones are packed into
a token budget and injected into the system prompt.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator


TOPIC_WEIGHT = 3
TEXT_WEIGHT = 1
RANKED_TOPIC_BONUS = 2
RECENCY_BONUS = 1
RECENCY_WINDOW_MS = 7 * 24 * 60 * 60 * 1000
MIN_KEYWORD_LENGTH = 4
ELLIPSIS = "…"

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class Memory(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    topics: List[str] = Field(default_factory=list)
    token_count: Optional[int] = Field(default=None, alias="tokenCount")
    last_accessed: Optional[int] = Field(default=None, alias="lastAccessed")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        # the frontend uses Date.now() ids
        return str(value) if isinstance(value, (int, float)) else value

    @property
    def tokens(self) -> int:
        # declared counts never go below the estimate for the text
        estimate = estimate_tokens(self.text)
        if self.token_count is not None:
            return max(self.token_count, estimate)
        return estimate

    def to_payload(self) -> Dict:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class MemorySelection:
    memories: List[Memory] = field(default_factory=list)
    used_topics: List[str] = field(default_factory=list)
    scores: List[int] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return sum(m.tokens for m in self.memories)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def extract_keywords(prompt: str) -> Set[str]:
    return {w for w in _WORD_RE.findall(prompt.lower()) if len(w) >= MIN_KEYWORD_LENGTH}


def score_memory(
    memory: Memory,
    keywords: Set[str],
    ranked_topics: Optional[Set[str]] = None,
    now_ms: Optional[int] = None,
) -> int:
    if not keywords:
        return 0
    topics = [t.lower() for t in memory.topics]
    text_words = set(_WORD_RE.findall(memory.text.lower()))

    score = 0
    for word in keywords:
        if any(word == t or word in t.split() for t in topics):
            score += TOPIC_WEIGHT
        if word in text_words:
            score += TEXT_WEIGHT

    # Bonuses only lift memories that already matched the prompt.
    if score <= 0:
        return 0
    if ranked_topics and ranked_topics.intersection(topics):
        score += RANKED_TOPIC_BONUS
    if now_ms is not None and memory.last_accessed is not None:
        if 0 <= now_ms - memory.last_accessed <= RECENCY_WINDOW_MS:
            score += RECENCY_BONUS
    return score


def _truncate(memory: Memory, budget: int) -> Optional[Memory]:
    # Keep whole 4-char tokens so the estimate stays within the budget.
    keep = budget * 4 - len(ELLIPSIS)
    if keep <= 0:
        return None
    text = memory.text[:keep].rstrip() + ELLIPSIS
    return memory.model_copy(update={"text": text, "token_count": estimate_tokens(text)})


def _pack(ranked: Iterable[tuple], budget: int) -> MemorySelection:
    selection = MemorySelection()
    remaining = budget
    for score, memory in ranked:
        if remaining <= 0:
            break
        if memory.tokens <= remaining:
            selection.memories.append(memory)
            selection.scores.append(score)
            remaining -= memory.tokens
            continue
        partial = _truncate(memory, remaining)
        if partial is not None:
            selection.memories.append(partial)
            selection.scores.append(score)
        break

    seen: Set[str] = set()
    for memory in selection.memories:
        for topic in memory.topics:
            if topic not in seen:
                seen.add(topic)
                selection.used_topics.append(topic)
    return selection


def _group_by_topic(scored: Sequence[tuple]) -> List[tuple]:
    groups: Dict[str, List[tuple]] = {}
    for score, memory in scored:
        key = memory.topics[0].lower() if memory.topics else ""
        groups.setdefault(key, []).append((score, memory))
    # dicts keep first-seen order, so sort() leaves tied groups in input order
    ordered = sorted(groups.values(), key=lambda g: sum(s for s, _ in g), reverse=True)
    return [item for group in ordered for item in group]


def select_memories(
    prompt: str,
    memories: Sequence[Memory],
    budget: int,
    strategy: str = "flat",
    ranked_topics: Optional[Iterable[str]] = None,
    recency_bonus: bool = False,
    now_ms: Optional[int] = None,
) -> MemorySelection:
    """Rank ``memories`` against ``prompt`` and pack the best into ``budget`` tokens.

    ``strategy`` is ``"flat"`` (global score order) or ``"grouped"`` (primary
    topic groups ordered by aggregate score). Ties keep input order.
    """
    if budget <= 0 or not memories:
        return MemorySelection()

    keywords = extract_keywords(prompt)
    boost = {t.lower() for t in ranked_topics} if ranked_topics else None
    if recency_bonus and now_ms is None:
        now_ms = int(time.time() * 1000)

    scored = [
        (score_memory(m, keywords, boost, now_ms if recency_bonus else None), m)
        for m in memories
    ]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: item[0], reverse=True)

    if strategy == "grouped":
        scored = _group_by_topic(scored)
    elif strategy != "flat":
        raise ValueError(f"Unknown memory selection strategy: {strategy}")

    return _pack(scored, budget)


def format_context(memories: Sequence[Memory]) -> str:
    return "\n".join(f"- {m.text}" for m in memories)
