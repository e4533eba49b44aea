# jojo/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware

from .clients import create_provider
from .config import Settings
from .context import ContextAssembler
from .database import create_db_engine, create_session_factory, init_db
from .errors import ChatAppError
from .fallback import ModelFallbackExecutor
from .recorder import TurnRecorder
from .routers import auth, chats
from .store import MessageStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if app.state.provider is not None and hasattr(app.state.provider, "close"):
        await app.state.provider.close()
    app.state.engine.dispose()


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatAppError)
    async def chat_app_error(request: Request, exc: ChatAppError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Optional[Settings] = None, provider=None) -> FastAPI:
    """Build the app; everything shared between requests is created here once."""
    settings = settings or Settings()

    app = FastAPI(title=f"{settings.app_name} – tech assistant", lifespan=lifespan)

    engine = create_db_engine(settings)
    init_db(engine)
    session_factory = create_session_factory(engine)
    message_store = MessageStore(session_factory)
    if provider is None:
        provider = create_provider(settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.message_store = message_store
    app.state.context_assembler = ContextAssembler(message_store, window=settings.context_window)
    app.state.turn_recorder = TurnRecorder(message_store)
    app.state.pwd_context = auth.build_password_context(settings.bcrypt_rounds)
    app.state.provider = provider
    app.state.executor = (
        ModelFallbackExecutor(provider, settings.chat_models, retry_any_error=settings.fallback_on_any_error)
        if provider is not None
        else None
    )

    app.include_router(auth.authRoutes)
    if settings.totp_enabled:
        app.include_router(auth.twoFactorRoutes)
    app.include_router(chats.router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    @app.get("/")
    def read_root() -> dict:
        return {"msg": f"{settings.app_name} server is running"}

    @app.get("/api/debug")
    def debug() -> dict:
        return {
            "status": "ok",
            "environment": settings.environment,
            "storage": settings.storage,
            "authMode": settings.auth_mode,
            "hasProviderKey": bool(settings.provider_api_key),
            "providerKeyName": settings.provider_key_name or "MISSING",
            "models": settings.chat_models,
            "streaming": settings.chat_streaming,
        }

    logger.info(
        "%s ready: storage=%s auth=%s provider key %s",
        settings.app_name,
        settings.storage,
        settings.auth_mode,
        "SET" if settings.provider_api_key else "MISSING",
    )
    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("jojo.main:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
