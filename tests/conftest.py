"""Shared fixtures: a fresh app per test over a temporary SQLite file."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import sessionmaker

from studyhub.db import get_db, init_db, make_engine
from studyhub.llm import Completion, CompletionError, get_llm
from studyhub.main import create_app
from studyhub.rate_limit import RateGate

PASSWORD = "Passw0rd!"


class FakeLLM:
    """Scripted stand-in for the completion client."""

    configured = True

    def __init__(self):
        self.replies: list[str] = []
        self.calls: list[dict] = []
        self.fail = False

    def complete(self, messages, model, temperature=0.7, max_tokens=1000):
        self.calls.append({"messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens})
        if self.fail:
            raise CompletionError("upstream down")
        content = self.replies.pop(0) if self.replies else f"echo: {messages[-1]['content']}"
        return Completion(content=content, model=model, prompt_tokens=12, completion_tokens=8, total_tokens=20)

    def close(self):
        pass


@pytest.fixture
def engine(tmp_path: Path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest_asyncio.fixture
async def app(session_factory, fake_llm):
    application = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_llm] = lambda: fake_llm
    # generous limits; rate-limit tests install their own gates
    application.state.login_gate = RateGate(60, 1000)
    application.state.register_gate = RateGate(60, 1000)

    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def register(client):
    """Register a user and return ``(body, auth_headers)``."""

    async def _register(username: str, email: str | None = None, password: str = PASSWORD):
        resp = await client.post(
            "/api/auth/register",
            json={
                "username": username,
                "email": email or f"{username}@example.com",
                "password": password,
                "firstName": username.capitalize(),
                "lastName": "Tester",
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return body, {"Authorization": f"Bearer {body['tokens']['accessToken']}"}

    return _register


@pytest_asyncio.fixture
async def alice(register):
    return await register("alice")


@pytest_asyncio.fixture
async def bob(register):
    return await register("bob")
