# tests/conftest.py
from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Generator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
import respx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from webhook_relay.core.settings import settings
from webhook_relay.db.session import Base, build_session_factory
from webhook_relay.main import create_app
from webhook_relay.services.delivery import DeliveryConfig, DeliveryPipeline
from webhook_relay.services.registry import AdminIdentity, RegistryStore

TEST_DB_URL = "sqlite://"
TEST_ADMIN_SECRET = "test-admin-secret"
ENDPOINT_URL = "https://hooks.example.com/relay"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables(engine: Engine) -> Iterator[None]:
    yield
    # Ensure each test sees a clean database even if commits occurred.
    with engine.begin() as cleanup_conn:
        for table in reversed(Base.metadata.sorted_tables):
            cleanup_conn.execute(table.delete())


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def registry(session_factory: sessionmaker[Session]) -> RegistryStore:
    return RegistryStore(session_factory)


@pytest.fixture()
def endpoint_url() -> str:
    return ENDPOINT_URL


@pytest.fixture()
def admin() -> AdminIdentity:
    return AdminIdentity(user_id="1001", display_label="ops#0001", display_name="Ops")


@pytest.fixture()
def http_mock() -> Iterator[respx.MockRouter]:
    """Intercept every outbound httpx request."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture()
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(timeout_seconds=2.0, validation_timeout_seconds=1.0)


@pytest_asyncio.fixture()
async def pipeline(
    registry: RegistryStore,
    delivery_config: DeliveryConfig,
) -> AsyncIterator[DeliveryPipeline]:
    pipeline = DeliveryPipeline(registry, config=delivery_config)
    try:
        yield pipeline
    finally:
        await pipeline.close()


@pytest.fixture()
def snapshot_dir(tmp_path: Path) -> Path:
    return tmp_path / "snapshots"


@pytest.fixture()
def relay_settings(
    monkeypatch: pytest.MonkeyPatch,
    snapshot_dir: Path,
) -> None:
    """Isolate the app from the developer's environment."""
    monkeypatch.setattr(settings, "admin_api_secret", TEST_ADMIN_SECRET)
    monkeypatch.setattr(settings, "snapshot_dir", str(snapshot_dir))
    monkeypatch.setattr(settings, "snapshot_schedule_enabled", False)
    monkeypatch.setattr(settings, "restore_on_startup", False)
    monkeypatch.setattr(settings, "github_token", None)
    monkeypatch.setattr(settings, "github_repo", None)


@pytest.fixture()
def app(engine: Engine, relay_settings: None) -> FastAPI:
    return create_app(engine=engine)


@pytest.fixture()
def client(app: FastAPI, http_mock: respx.MockRouter) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def make_token(
    subject: str = "operator",
    audience: str | None = None,
    secret: str = TEST_ADMIN_SECRET,
) -> str:
    return jwt.encode(
        {"sub": subject, "aud": audience or settings.admin_api_audience},
        secret,
        algorithm="HS256",
    )


@pytest.fixture()
def token_factory(relay_settings: None) -> Callable[..., str]:
    return make_token


@pytest.fixture()
def auth_headers(relay_settings: None) -> dict[str, str]:
    """Return authorization headers for an operator."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture()
def bound_channel(registry: RegistryStore, admin: AdminIdentity) -> Callable[..., str]:
    """Bind a channel directly through the registry, skipping validation."""

    def _bind(
        channel_id: str = "200",
        endpoint_url: str = ENDPOINT_URL,
        server_id: str = "100",
    ) -> str:
        registry.bind(channel_id, endpoint_url, server_id, admin, server_name="Test Server")
        return channel_id

    return _bind
