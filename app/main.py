from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from mangum import Mangum
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent.agent import (
    ChatContext,
    build_pipeline,
    build_response,
    check_pro_access,
    run_pipeline,
    verify_password,
)
from agent.core.memory import Memory
from agent.errors import BadRequestError, ChatError, ConfigurationError
from agent.tools.gemini import GeminiClient
from config.settings import Settings, get_settings


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("memchat")
logging.getLogger("httpx").setLevel(logging.WARNING)

DEFAULT_IMAGE_PROMPT = "Descreva e analise esta imagem."

app = FastAPI(title="Memory Chat Proxy", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)


class ImagePayload(BaseModel):
    mime_type: str = Field(..., alias="mimeType", min_length=1)
    data: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Optional[str] = None
    prompt: Optional[str] = None
    is_pro: bool = Field(False, alias="isPro")
    pro_token: Optional[str] = Field(None, alias="proToken")
    use_dynamic_persona: bool = Field(False, alias="useDynamicPersona")
    is_auto_memory: bool = Field(False, alias="isAutoMemory")
    auto_memory_global: bool = Field(False, alias="autoMemoryGlobal")
    auto_memory_chat: bool = Field(False, alias="autoMemoryChat")
    memories: List[Memory] = Field(default_factory=list)
    global_memories: List[Memory] = Field(default_factory=list, alias="globalMemories")
    chat_memories: List[Memory] = Field(default_factory=list, alias="chatMemories")
    image: Optional[ImagePayload] = None

    def memory_targets(self) -> List[str]:
        targets = []
        if self.is_auto_memory:
            targets.append("newMemory")
        if self.auto_memory_global:
            targets.append("newGlobalMemory")
        if self.auto_memory_chat:
            targets.append("newChatMemory")
        return targets


def get_gemini_client(settings: Settings = Depends(get_settings)) -> GeminiClient:
    return GeminiClient(settings)


@app.exception_handler(ChatError)
def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # submitted values can carry the pro token or memory text
    errors = [{k: v for k, v in err.items() if k != "input"} for err in exc.errors()]
    logger.warning("Malformed request body: %s", errors)
    return JSONResponse(status_code=400, content={"error": "Requisição inválida."})


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def handle_chat(req: ChatRequest, settings: Settings, client: GeminiClient) -> Dict[str, Any]:
    if not settings.gemini_api_key:
        raise ConfigurationError("Chave de API não configurada no servidor.")
    if req.is_pro:
        check_pro_access(settings, req.pro_token)

    prompt = (req.prompt or "").strip()
    if not prompt and req.image is None:
        raise BadRequestError("Nenhum prompt foi fornecido.")

    ctx = ChatContext(
        prompt=prompt or DEFAULT_IMAGE_PROMPT,
        is_pro=req.is_pro,
        use_dynamic_persona=req.use_dynamic_persona,
        memories=[*req.memories, *req.global_memories, *req.chat_memories],
        image={"mime_type": req.image.mime_type, "data": req.image.data} if req.image else None,
        memory_targets=req.memory_targets(),
    )
    logger.info(
        "Incoming chat: prompt_len=%s memories=%s pro=%s persona=%s image=%s auto_memory=%s",
        len(prompt),
        len(ctx.memories),
        ctx.is_pro,
        ctx.use_dynamic_persona,
        ctx.image is not None,
        ctx.memory_targets,
    )

    run_pipeline(build_pipeline(settings, client), ctx)
    logger.info(
        "Model responded: %s chars, canvas=%s, context_topics=%s, degraded=%s",
        len(ctx.ai_response),
        ctx.canvas_content is not None,
        len(ctx.selection.used_topics),
        ctx.degraded,
    )
    return build_response(ctx)


@app.post("/api/gemini")
def gemini(
    req: ChatRequest,
    settings: Settings = Depends(get_settings),
    client: GeminiClient = Depends(get_gemini_client),
) -> Dict[str, Any]:
    logger.info(
        "Config: model=%s key_set=%s pro_password_set=%s",
        settings.gemini_model,
        bool(settings.gemini_api_key),
        bool(settings.pro_password),
    )
    try:
        if req.action == "verifyPassword":
            return {"success": verify_password(settings, req.pro_token)}
        if req.action == "chat":
            return handle_chat(req, settings, client)
    except ChatError as e:
        logger.error("Request failed (%s): %s", e.status_code, e.message)
        raise
    except Exception as e:
        logger.exception("Chat processing failed: %s", e)
        raise ChatError(f"Erro interno do servidor: {e}") from e
    logger.warning("Rejected unknown action: %r", req.action)
    raise BadRequestError("Ação inválida.")


@app.options("/api/gemini", status_code=204)
def gemini_preflight() -> Response:
    return Response(status_code=204)


@app.get("/health")
def health():
    return {"status": "ok"}


handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
