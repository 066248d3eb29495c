from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from agent.errors import (
    ConfigurationError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamValidationError,
)
from config.settings import Settings


logger = logging.getLogger(__name__)

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped[3:]
        if stripped.startswith("json"):
            stripped = stripped[len("json"):].lstrip()
        stripped = stripped.rstrip()
        if stripped.endswith("```"):
            stripped = stripped[:-3]
    return stripped.strip()


def extract_json_segment(text: str, opener: str = "{") -> Optional[str]:
    """Return the first balanced JSON object (or array) found in ``text``."""
    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start: idx + 1]
    return None


def build_payload(
    text: str,
    image: Optional[Dict[str, str]] = None,
    temperature: Optional[float] = None,
    top_p: Optional[float] = None,
) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = [{"text": text}]
    if image:
        parts.append(
            {"inline_data": {"mime_type": image["mime_type"], "data": image["data"]}}
        )
    generation_config: Dict[str, Any] = {}
    if temperature is not None:
        generation_config["temperature"] = temperature
    if top_p is not None:
        generation_config["topP"] = top_p
    return {
        "contents": [{"role": "user", "parts": parts}],
        "safetySettings": SAFETY_SETTINGS,
        "generationConfig": generation_config,
    }


def extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise UpstreamError("Resposta inválida da API do Gemini.")
    candidates = data.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        feedback = data.get("promptFeedback")
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if reason:
            raise UpstreamError(f"Resposta bloqueada pelo filtro de segurança ({reason}).")
        raise UpstreamError("A API do Gemini não retornou nenhuma resposta.")
    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise UpstreamError("Resposta inválida da API do Gemini.")
    text = "".join(
        p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
    )
    if not text.strip():
        raise UpstreamError("A API do Gemini retornou uma resposta vazia.")
    return text


class GeminiClient:
    """Thin wrapper over the ``generateContent`` REST endpoint."""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _endpoint(self, model: str) -> str:
        return f"{self.settings.gemini_api_base.rstrip('/')}/models/{model}:generateContent"

    def generate(
        self,
        text: str,
        model: Optional[str] = None,
        image: Optional[Dict[str, str]] = None,
    ) -> str:
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise ConfigurationError("Chave de API não configurada no servidor.")

        model = model or self.settings.gemini_model
        payload = build_payload(
            text,
            image=image,
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
        )

        try:
            with httpx.Client(
                timeout=self.settings.request_timeout, transport=self._transport
            ) as client:
                response = client.post(
                    self._endpoint(model),
                    headers={"x-goog-api-key": api_key},
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Falha ao contatar a API do Gemini: {exc}") from exc

        if response.status_code == 429:
            logger.warning("Gemini rate limit hit (model=%s)", model)
            raise UpstreamRateLimitError(
                "Limite de requisições atingido. Tente novamente em instantes."
            )
        if response.status_code == 400:
            logger.warning("Gemini rejected request: %s", response.text[:500])
            raise UpstreamValidationError("A requisição foi rejeitada pela API do Gemini.")
        if response.is_error:
            logger.error(
                "Gemini API error %s: %s", response.status_code, response.text[:500]
            )
            raise UpstreamError(f"Erro na API do Gemini ({response.status_code}).")

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise UpstreamError("Resposta inválida da API do Gemini.") from exc
        return extract_text(data)
