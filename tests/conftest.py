"""Pytest configuration and shared fixtures."""

import os
from collections.abc import AsyncGenerator, Callable, Generator
from typing import Iterable, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.core.resilience import RetryPolicy
from app.db.session import DatabaseManager
from app.dependencies import ServiceContainer, build_container, reset_container, set_container
from app.services.orchestrator import AnalysisOrchestrator, OrchestratorConfig
from app.services.progress import ProgressPublisher
from app.services.provider_health import ProviderHealthRegistry
from app.services.session_store import InMemorySessionStore, SessionStore
from competitoragents.providers.base import BaseProviderAdapter
from competitoragents.providers.profiles import ProviderCategory
from tests.fixtures.scripted_providers import ScriptedAdapter


@pytest.fixture
async def test_db() -> AsyncGenerator[DatabaseManager, None]:
    """Create a test database with in-memory SQLite."""
    database_url = "sqlite+aiosqlite:///:memory:"
    db_manager = DatabaseManager(database_url, echo=False)

    await db_manager.create_tables()

    yield db_manager

    await db_manager.drop_tables()
    await db_manager.close()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts with negligible backoff."""
    return RetryPolicy(
        max_attempts=3,
        initial_backoff=0.001,
        max_backoff=0.001,
        multiplier=1.0,
        jitter=0.0,
        max_total_wait=1.0,
    )


@pytest.fixture
async def orchestrator_factory(
    fast_retry: RetryPolicy,
) -> AsyncGenerator[Callable[..., AnalysisOrchestrator], None]:
    """Build orchestrators wired to scripted adapters and in-memory services."""
    created: List[AnalysisOrchestrator] = []

    def factory(
        adapters: Iterable[BaseProviderAdapter],
        *,
        store: Optional[SessionStore] = None,
        known: Iterable[str] = (),
        **config_overrides,
    ) -> AnalysisOrchestrator:
        by_id = {adapter.provider_id: adapter for adapter in adapters}
        health = ProviderHealthRegistry(by_id.keys(), known=known, failure_threshold=100)
        settings = {
            "retry_policy": fast_retry,
            "attempt_timeout": 2.0,
            "target_timeout": 5.0,
            "session_timeout": 10.0,
            "cancel_grace_period": 2.0,
            "profiles": {adapter.provider_id: adapter.profile for adapter in by_id.values()},
        }
        settings.update(config_overrides)
        orchestrator = AnalysisOrchestrator(
            by_id,
            status_source=health,
            store=store or InMemorySessionStore(),
            publisher=ProgressPublisher(),
            config=OrchestratorConfig(**settings),
            health=health,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        await orchestrator.shutdown()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for API tests: in-memory store, quick retries, no credentials."""
    return Settings(
        ANALYSIS_PROVIDERS="openai,anthropic,perplexity",
        SESSION_STORE="memory",
        RETRY_DEFAULT_ATTEMPTS=2,
        RETRY_DEFAULT_BACKOFF_SECONDS=0.001,
        RETRY_MAX_BACKOFF_SECONDS=0.001,
        PROVIDER_CALL_TIMEOUT=2.0,
        TARGET_TIMEOUT=5.0,
        SESSION_TIMEOUT=10.0,
        CANCEL_GRACE_PERIOD=2.0,
        CIRCUIT_BREAKER_FAILURE_THRESHOLD=100,
    )


@pytest.fixture
def scripted_adapters() -> dict[str, ScriptedAdapter]:
    """Scripted stand-ins for the configured providers, keyed by provider id."""
    return {
        "openai": ScriptedAdapter("openai", priority=1),
        "anthropic": ScriptedAdapter("anthropic", priority=2),
        "perplexity": ScriptedAdapter(
            "perplexity", priority=4, category=ProviderCategory.SEARCH, cost_per_call=0.005
        ),
    }


@pytest.fixture
async def app_container(
    test_settings: Settings,
    scripted_adapters: dict[str, ScriptedAdapter],
) -> AsyncGenerator[ServiceContainer, None]:
    """Install a service container backed by scripted providers."""
    container = build_container(test_settings, adapters=scripted_adapters)
    set_container(container)
    await container.startup()

    yield container

    await container.aclose()
    reset_container()


@pytest.fixture
async def async_client(app_container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing FastAPI endpoints."""
    from app.main import app

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


@pytest.fixture(autouse=True)
def reset_env_vars() -> Generator[None, None, None]:
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
