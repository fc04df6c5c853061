"""HTTP 路由层（FastAPI）。

对外暴露 Ollama 兼容接口：

- GET  /                 存活检查
- GET  /api/version      版本号
- GET  /api/tags         模型列表
- POST /api/chat         对话（message 信封，可流式）
- POST /api/generate     补全（response 信封，可流式）
- POST /api/embeddings   向量（单条 / 批量）
- OPTIONS *              CORS 预检

注册表与 Provider 句柄在启动时构建一次，保存在 app.state.proxy 上，运行期只读。
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ollama_proxy import __version__
from ollama_proxy.api.embeddings import (
    EmbeddingOrchestrator,
    format_embedding_response,
    validate_embedding_response,
)
from ollama_proxy.api.errors import classify_and_log
from ollama_proxy.api.service import build_envelope, generate_reply, list_tags
from ollama_proxy.api.streaming import NDJSON_MEDIA_TYPE, StreamResponder
from ollama_proxy.api.validation import validate_chat, validate_embedding, validate_generate
from ollama_proxy.config.models_file import load_models_file
from ollama_proxy.config.settings import settings
from ollama_proxy.domain.exceptions import ValidationError
from ollama_proxy.domain.models import ChatRequest, ResponseKey
from ollama_proxy.infrastructure.logging.logger import logger
from ollama_proxy.providers import create_providers
from ollama_proxy.providers.base import ProviderClient
from ollama_proxy.providers.dispatcher import ProviderDispatcher
from ollama_proxy.providers.registry import ModelRegistry


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

LIVENESS_TEXT = "Ollama is running in proxy mode."


@dataclass(frozen=True)
class ProxyContext:
    """进程级只读状态：注册表、Provider 分发与 embedding 编排。"""

    registry: ModelRegistry
    dispatcher: ProviderDispatcher
    orchestrator: EmbeddingOrchestrator
    version: str


def build_context(
    cfg=settings,
    providers: Optional[Dict[str, ProviderClient]] = None,
    raw_models: Optional[Dict[str, Any]] = None,
) -> ProxyContext:
    """根据配置构建 ProxyContext；providers / raw_models 可注入，便于测试。"""

    handles = create_providers(cfg) if providers is None else providers
    dispatcher = ProviderDispatcher(handles)
    if raw_models is None:
        raw_models, source = load_models_file(cfg.models_file)
        if source is not None:
            logger.info(f"Loaded models from {source}")
        else:
            logger.info("Using built-in models. Create a models.json file to customize.")
    registry = ModelRegistry.load(raw_models, dispatcher)
    return ProxyContext(
        registry=registry,
        dispatcher=dispatcher,
        orchestrator=EmbeddingOrchestrator(cfg.embedding_concurrency),
        version=cfg.ollama_version,
    )


class CorsMiddleware:
    """为所有响应附加 CORS 头，并直接应答 OPTIONS 预检。

    纯 ASGI 实现，不会缓冲 StreamingResponse 的内容。
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        logger.info(f"{scope['method']} {scope['path']}")
        if scope["method"] == "OPTIONS":
            response = Response(status_code=200, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for key, value in CORS_HEADERS.items():
                    headers[key] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


router = APIRouter()


def _context(request: Request) -> ProxyContext:
    return request.app.state.proxy


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(code="INVALID_JSON", message="Request body must be valid JSON")


def _error_response(exc: Exception, context: str, fields: Dict[str, Any]) -> JSONResponse:
    classified = classify_and_log(exc, context, fields)
    return JSONResponse(classified.to_body(), status_code=classified.status)


@router.get("/")
async def root() -> PlainTextResponse:
    return PlainTextResponse(LIVENESS_TEXT)


@router.get("/api/version")
async def version(request: Request) -> JSONResponse:
    return JSONResponse({"version": _context(request).version})


@router.get("/api/tags")
async def tags(request: Request) -> JSONResponse:
    return JSONResponse(list_tags(_context(request).registry))


async def _handle_generation(
    request: Request,
    validator: Callable[[Any], ChatRequest],
    response_key: ResponseKey,
) -> Response:
    ctx = _context(request)
    model_name: Optional[str] = None
    try:
        body = await _read_json(request)
        chat_req = validator(body)
        model_name = chat_req.model_name
        config = ctx.registry.lookup_chat(chat_req.model_name)
        handle = ctx.dispatcher.resolve(config.provider)
        logger.debug(
            "Generation request",
            extra={"extra": {"model": model_name, "messages": len(chat_req.messages), "stream": chat_req.stream}},
        )

        if chat_req.stream:
            # 构造阶段的校验失败仍在响应头发出之前，可以返回普通 JSON 错误
            responder = StreamResponder(
                handle,
                config,
                chat_req,
                response_key,
                is_disconnected=request.is_disconnected,
            )
            return StreamingResponse(
                responder.iter_lines(),
                media_type=NDJSON_MEDIA_TYPE,
                headers={"Cache-Control": "no-cache"},
            )

        result = await generate_reply(handle, config, chat_req)
        return JSONResponse(build_envelope(chat_req.model_name, result, response_key))
    except Exception as exc:
        return _error_response(exc, "API request error", {"model": model_name, "path": request.url.path})


@router.post("/api/chat")
async def chat(request: Request) -> Response:
    return await _handle_generation(request, validate_chat, "message")


@router.post("/api/generate")
async def generate(request: Request) -> Response:
    return await _handle_generation(request, validate_generate, "response")


@router.post("/api/embeddings")
async def embeddings(request: Request) -> Response:
    ctx = _context(request)
    model_name: Optional[str] = None
    try:
        body = await _read_json(request)
        emb_req, config = validate_embedding(body, ctx.registry)
        model_name = emb_req.model_name
        logger.info(
            "Embedding request",
            extra={"extra": {"model": model_name, "input_count": len(emb_req.input_texts)}},
        )

        handle = ctx.dispatcher.resolve(config.provider)
        result = await ctx.orchestrator.generate(handle, config, emb_req.input_texts)
        envelope = format_embedding_response(result, emb_req.model_name, emb_req.single_text)
        validate_embedding_response(envelope, len(emb_req.input_texts))

        logger.info(f"Successfully processed embedding request for model {model_name}")
        return JSONResponse(envelope)
    except Exception as exc:
        return _error_response(exc, "Embedding endpoint error", {"model": model_name})


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # 未匹配的路由（包括方法不匹配）统一按 Ollama 的方式返回 404
    if exc.status_code in (404, 405):
        return JSONResponse({"error": "Not found"}, status_code=404)
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


def create_app(context: Optional[ProxyContext] = None) -> FastAPI:
    """创建 FastAPI 应用；未传入 context 时按全局配置构建。"""

    app = FastAPI(
        title="Ollama Proxy",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.proxy = context or build_context()
    app.add_middleware(CorsMiddleware)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.include_router(router)
    return app


__all__ = ["CorsMiddleware", "ProxyContext", "build_context", "create_app"]
