from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Optional

import jinja2
from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from chat.clients.ollama import OllamaChatClient
from chat.core.memory import ConversationStore
from chat.core.session import SessionIdentity, SessionResolver
from chat.errors import BackendError, EmptyPromptError, TemplateRenderError
from chat.relay import ChatRelay, CompletionClient
from config.settings import Settings, get_settings


settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("chatrelay")

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


def _current_identity(request: Request) -> SessionIdentity:
    cookie_name = request.app.state.settings.session_cookie_name
    return request.app.state.resolver.resolve(request.cookies.get(cookie_name))


def _attach_cookie(request: Request, response: Response, identity: SessionIdentity) -> None:
    if not identity.is_new:
        return
    cfg: Settings = request.app.state.settings
    response.set_cookie(
        key=cfg.session_cookie_name,
        value=identity.session_id,
        max_age=cfg.session_cookie_max_age,
        expires=cfg.session_cookie_max_age,
        path="/",
        httponly=True,
        secure=cfg.is_production,
        samesite="lax",
    )


async def _sweep_sessions(store: ConversationStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        store.evict_expired()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ConversationStore] = None,
    client: Optional[CompletionClient] = None,
) -> FastAPI:
    if settings is None:
        settings = get_settings()
    if store is None:
        store = ConversationStore(ttl_seconds=settings.session_ttl or None)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Config: backend=%s model=%s session_ttl=%s",
            settings.ollama_base_url,
            settings.ollama_model,
            settings.session_ttl,
        )
        built_client = app.state.relay is None
        if built_client:
            app.state.relay = ChatRelay(store=store, client=OllamaChatClient.from_settings(settings))
        sweeper = None
        if store.ttl_seconds and settings.session_sweep_interval > 0:
            sweeper = asyncio.create_task(_sweep_sessions(store, settings.session_sweep_interval))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
            aclose = getattr(app.state.relay.client, "aclose", None)
            if aclose is not None:
                await aclose()
            if built_client:
                app.state.relay = None

    app = FastAPI(title="Chat Relay", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.resolver = SessionResolver()
    # without an injected client the backend client is built at startup
    app.state.relay = ChatRelay(store=store, client=client) if client is not None else None
    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

    @app.middleware("http")
    async def recover_unexpected(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return PlainTextResponse("Internal server error", status_code=500)

    @app.exception_handler(TemplateRenderError)
    async def template_error(request: Request, exc: TemplateRenderError):
        logger.error("Template error: %s", exc)
        return PlainTextResponse("Internal server error", status_code=500)

    @app.get("/")
    def home(request: Request) -> Response:
        identity = _current_identity(request)
        history = request.app.state.store.get(identity.session_id)
        try:
            response = templates.TemplateResponse(request, "index.html", {"history": history})
        except jinja2.TemplateError as exc:
            raise TemplateRenderError(str(exc)) from exc
        _attach_cookie(request, response, identity)
        return response

    @app.post("/chat")
    async def chat(request: Request, prompt: str = Form("")) -> Response:
        identity = _current_identity(request)
        try:
            await request.app.state.relay.exchange(identity.session_id, prompt)
        except EmptyPromptError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except BackendError as exc:
            logger.error("Chat backend error: %s", exc)
            response: Response = PlainTextResponse(
                "Error communicating with chat backend", status_code=502
            )
        else:
            response = RedirectResponse("/", status_code=303)
        _attach_cookie(request, response, identity)
        return response

    @app.post("/reset")
    async def reset(request: Request) -> Response:
        identity = _current_identity(request)
        if not identity.is_new:
            await request.app.state.relay.reset(identity.session_id)
        return RedirectResponse("/", status_code=303)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8080)
