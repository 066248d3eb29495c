from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from agent.core.auto_memory import generate_memory
from agent.core.canvas import has_code_block, split_canvas
from agent.core.memory import Memory, MemorySelection, format_context, select_memories
from agent.core.prompt import (
    CANVAS_EXTRACTION_TEMPLATE,
    PERSONA_INFERENCE_TEMPLATE,
    TOPIC_RANKING_TEMPLATE,
    compose_prompt,
)
from agent.errors import AuthorizationError, ConfigurationError, UpstreamError
from agent.tools.gemini import GeminiClient, extract_json_segment, strip_code_fences
from config.settings import Settings


logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    DEGRADE = "degrade"


STAGE_POLICIES: Dict[str, FailurePolicy] = {
    "topic_ranking": FailurePolicy.DEGRADE,
    "memory_selection": FailurePolicy.FAIL_FAST,
    "persona_inference": FailurePolicy.DEGRADE,
    "answer": FailurePolicy.FAIL_FAST,
    "canvas_extraction": FailurePolicy.DEGRADE,
    "auto_memory": FailurePolicy.DEGRADE,
}


@dataclass
class ChatContext:
    """Inputs of one chat request and the outputs each stage fills in."""

    prompt: str
    is_pro: bool = False
    use_dynamic_persona: bool = False
    memories: List[Memory] = field(default_factory=list)
    image: Optional[Dict[str, str]] = None
    memory_targets: List[str] = field(default_factory=list)

    ranked_topics: List[str] = field(default_factory=list)
    selection: MemorySelection = field(default_factory=MemorySelection)
    persona: Optional[str] = None
    answer: str = ""
    ai_response: str = ""
    canvas_content: Optional[str] = None
    new_memory: Optional[Memory] = None
    degraded: List[str] = field(default_factory=list)


@dataclass
class Stage:
    name: str
    run: Callable[[ChatContext], None]
    enabled: Callable[[ChatContext], bool] = lambda ctx: True

    @property
    def policy(self) -> FailurePolicy:
        return STAGE_POLICIES[self.name]


def verify_password(settings: Settings, token: Optional[str]) -> bool:
    if not settings.pro_password:
        raise ConfigurationError("Senha do modo Pro não configurada no servidor.")
    return token == settings.pro_password


def check_pro_access(settings: Settings, token: Optional[str]) -> None:
    if not verify_password(settings, token):
        raise AuthorizationError("Senha do modo Pro inválida.")


def build_pipeline(settings: Settings, client: GeminiClient) -> List[Stage]:
    aux_model = settings.gemini_model

    def rank_topics(ctx: ChatContext) -> None:
        topics: Dict[str, str] = {}
        for memory in ctx.memories:
            for topic in memory.topics:
                topics.setdefault(topic.lower(), topic)
        raw = client.generate(
            TOPIC_RANKING_TEMPLATE.format(
                prompt=ctx.prompt, topics=json.dumps(list(topics.values()), ensure_ascii=False)
            ),
            model=aux_model,
        )
        segment = extract_json_segment(strip_code_fences(raw), opener="[")
        if not segment:
            raise UpstreamError("Topic ranking reply had no JSON array.")
        try:
            ranked = json.loads(segment)
        except json.JSONDecodeError as exc:
            raise UpstreamError("Topic ranking reply was not valid JSON.") from exc
        ctx.ranked_topics = [
            topics[str(t).lower()] for t in ranked if str(t).lower() in topics
        ]

    def select(ctx: ChatContext) -> None:
        ctx.selection = select_memories(
            ctx.prompt,
            ctx.memories,
            budget=settings.memory_token_budget,
            strategy=settings.memory_selection,
            ranked_topics=ctx.ranked_topics,
            recency_bonus=settings.memory_recency_bonus,
        )

    def infer_persona(ctx: ChatContext) -> None:
        raw = client.generate(PERSONA_INFERENCE_TEMPLATE.format(prompt=ctx.prompt), model=aux_model)
        ctx.persona = raw.strip().splitlines()[0].strip() or None

    def answer(ctx: ChatContext) -> None:
        text = compose_prompt(
            ctx.prompt,
            memory_context=format_context(ctx.selection.memories),
            use_dynamic_persona=ctx.use_dynamic_persona,
            persona=ctx.persona,
        )
        ctx.answer = client.generate(text, model=settings.model_for(ctx.is_pro), image=ctx.image)
        ctx.ai_response, ctx.canvas_content = split_canvas(ctx.answer)

    def extract_canvas(ctx: ChatContext) -> None:
        raw = client.generate(CANVAS_EXTRACTION_TEMPLATE.format(answer=ctx.answer), model=aux_model)
        ctx.canvas_content = raw.strip()

    def remember(ctx: ChatContext) -> None:
        ctx.new_memory = generate_memory(client, ctx.prompt, ctx.ai_response, model=aux_model)

    return [
        Stage(
            "topic_ranking",
            rank_topics,
            lambda ctx: settings.enable_topic_ranking and any(m.topics for m in ctx.memories),
        ),
        Stage("memory_selection", select),
        Stage("persona_inference", infer_persona, lambda ctx: ctx.use_dynamic_persona),
        Stage("answer", answer),
        Stage(
            "canvas_extraction",
            extract_canvas,
            lambda ctx: settings.enable_canvas_extraction
            and ctx.canvas_content is None
            and has_code_block(ctx.answer),
        ),
        Stage("auto_memory", remember, lambda ctx: bool(ctx.memory_targets)),
    ]


def run_pipeline(stages: List[Stage], ctx: ChatContext) -> ChatContext:
    for stage in stages:
        if not stage.enabled(ctx):
            continue
        try:
            stage.run(ctx)
        except Exception as exc:
            if stage.policy is FailurePolicy.FAIL_FAST:
                raise
            logger.warning("Stage %s degraded: %s", stage.name, exc, exc_info=True)
            ctx.degraded.append(stage.name)
    return ctx


def build_response(ctx: ChatContext) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "aiResponse": ctx.ai_response,
        "canvasContent": ctx.canvas_content,
        "usedContext": list(ctx.selection.used_topics),
    }
    payload = ctx.new_memory.to_payload() if ctx.new_memory else None
    targets = ctx.memory_targets or ["newMemory"]
    for key in targets:
        body[key] = dict(payload) if payload else None
    if "newMemory" not in body:
        body["newMemory"] = None
    return body
