from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from streamchat.core.config import settings
from streamchat.core.credentials import CredentialValidator, has_valid_format
from streamchat.core.logging_setup import configure_logging
from streamchat.core.middleware import RequestIDMiddleware
from streamchat.core.openai_client import close_openai_client
from streamchat.core.user_rate_limiter import SlidingWindowRateLimiter
from streamchat.kb.ingester import DocumentManager
from streamchat.models.schemas import HealthResponse
from streamchat.services.chat import ChatOrchestrator
from streamchat.services.sessions import InMemorySessionStore

configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.startup", environment=settings.ENVIRONMENT, model=settings.LLM_MODEL)

    if not settings.OPENAI_API_KEY:
        logger.warning(
            "app.startup.openai_key_missing",
            hint="Set LLM_API_KEY or OPENAI_API_KEY; chat turns will fail without it",
        )

    sessions = InMemorySessionStore()
    await sessions.init()
    documents = DocumentManager()

    app.state.sessions = sessions
    app.state.documents = documents
    app.state.chat_rate_limiter = SlidingWindowRateLimiter(
        limit=settings.CHAT_RATE_LIMIT,
        window_seconds=settings.CHAT_RATE_WINDOW_SECONDS,
    )
    app.state.orchestrator = ChatOrchestrator(
        sessions=sessions,
        documents=documents,
        credentials=CredentialValidator(settings.OPENAI_API_KEY),
    )

    yield

    logger.info("app.shutdown")
    documents.cleanup_session_files()
    await sessions.teardown()
    await close_openai_client()


def create_app() -> FastAPI:
    app = FastAPI(
        title="StreamChat API",
        description="Streaming research and PDF chat backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=3600,
    )

    app.add_middleware(RequestIDMiddleware)

    from streamchat.api.v1 import chat

    app.include_router(chat.router, prefix="/chat", tags=["chat"])
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Liveness check. Does not call the model provider."""
        return HealthResponse(
            status="healthy",
            environment=settings.ENVIRONMENT,
            api_key_configured=has_valid_format(settings.OPENAI_API_KEY),
        )

    return app


app = create_app()
