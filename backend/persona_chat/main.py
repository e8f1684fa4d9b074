from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from persona_chat.api import chat as chat_api
from persona_chat.api import memory as memory_api
from persona_chat.api import room as room_api
from persona_chat.api import websocket as websocket_api
from persona_chat.core.config import get_settings
from persona_chat.core.logging import setup_logging
from persona_chat.db.base import create_engine, create_sessionmaker, init_db
from persona_chat.services.agent import ChatAgent
from persona_chat.services.chat_transport import ChatTransport
from persona_chat.services.conversation_manager import ConversationManager
from persona_chat.services.generation_service import GenerationService
from persona_chat.services.memory_service import MemoryService
from persona_chat.services.orchestrator import ResponseOrchestrator
from persona_chat.services.prompt_builder import PromptBuilder


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        await app.state.agent.run()
        yield
        await app.state.agent.stop()
        await app.state.generation_service.shutdown()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.memory_service = MemoryService(sessionmaker, enabled=settings.memory_enabled)
    app.state.conversation_manager = ConversationManager(
        sessionmaker, app.state.memory_service, settings
    )
    app.state.generation_service = GenerationService(settings)
    app.state.orchestrator = ResponseOrchestrator(
        app.state.conversation_manager,
        PromptBuilder(),
        app.state.generation_service,
        settings,
    )
    app.state.agent = ChatAgent(
        app.state.conversation_manager,
        app.state.orchestrator,
        transport_factory=lambda handler: ChatTransport(
            handler, max_message_len=settings.max_message_len
        ),
    )
    app.state.chat_transport = app.state.agent.transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    app.include_router(room_api.router)
    app.include_router(memory_api.router)
    app.include_router(chat_api.router)
    app.include_router(websocket_api.router)

    return app


def run() -> None:
    """Serve the application with uvicorn using configured host and port."""

    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "persona_chat.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )


app = create_app()
