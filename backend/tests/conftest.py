import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from persona_chat.core.config import get_settings
from persona_chat.db.base import init_db
from persona_chat.main import create_app
from persona_chat.providers.base import LLMResult, ProviderRuntimeConfig, TokenCallback


@pytest.fixture
def stub_adapter():
    return StubAdapter()


@pytest.fixture
def app(tmp_path, monkeypatch, stub_adapter):
    db_path = tmp_path / "test_persona_chat.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("LLM_PROVIDER", "stub")
    monkeypatch.setenv("LLM_MODEL", "stub-model")
    get_settings.cache_clear()
    app = create_app()
    app.state.generation_service.set_adapters({"stub": stub_adapter})
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    await app.state.agent.run()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.agent.stop()
    await app.state.generation_service.shutdown()
    await app.state.engine.dispose()


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubAdapter:
    """Adapter stub that streams a fixed reply and records the prompts it saw."""

    def __init__(self, tokens: tuple[str, ...] = ("Hello", " there")) -> None:
        self.tokens = tokens
        self.calls: list[list[dict]] = []

    async def stream_chat(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], on_token: TokenCallback
    ) -> LLMResult:
        self.calls.append(messages)
        for token in self.tokens:
            await asyncio.sleep(0)
            on_token(token)
        return LLMResult(
            content="".join(self.tokens),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=1,
            token_out=len(self.tokens),
        )
