"""Dependency injection: builds and hands out the application's services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import structlog

from competitoragents.providers import BaseProviderAdapter, ProviderFactory

from ..config import Settings, get_settings
from ..db.session import DatabaseManager, init_db
from ..services.orchestrator import AnalysisOrchestrator
from ..services.progress import ProgressPublisher
from ..services.provider_health import ProviderHealthRegistry
from ..services.session_store import InMemorySessionStore, SessionStore
from ..services.sql_session_store import SqlSessionStore

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived service of one application instance."""

    settings: Settings
    adapters: Dict[str, BaseProviderAdapter]
    health: ProviderHealthRegistry
    store: SessionStore
    publisher: ProgressPublisher
    orchestrator: AnalysisOrchestrator
    db_manager: Optional[DatabaseManager] = None

    async def startup(self) -> None:
        if self.db_manager is not None:
            await self.db_manager.create_tables()
        if isinstance(self.store, SqlSessionStore):
            await self.store.prune(retention_days=self.settings.session_retention_days)

    async def aclose(self) -> None:
        await self.orchestrator.shutdown()
        for adapter in self.adapters.values():
            await adapter.aclose()
        if self.db_manager is not None:
            await self.db_manager.close()


def build_container(
    settings: Optional[Settings] = None,
    *,
    adapters: Optional[Mapping[str, BaseProviderAdapter]] = None,
    store: Optional[SessionStore] = None,
) -> ServiceContainer:
    """Wire the services from settings.

    ``adapters`` and ``store`` replace the configured ones, which is how
    tests run the application against scripted providers.
    """
    settings = settings or get_settings()
    config = settings.orchestrator_config()

    if adapters is None:
        adapters = ProviderFactory.build_adapters(
            config.profiles,
            api_keys=settings.provider_api_keys,
            model_overrides=settings.provider_model_overrides,
            enabled=settings.enabled_providers,
            timeout=settings.provider_call_timeout,
        )
    adapters = dict(adapters)

    health = ProviderHealthRegistry(
        adapters.keys(),
        known=[*settings.enabled_providers, *config.profiles],
        disabled=settings.disabled_provider_list,
        global_enabled=settings.analysis_enabled,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        recovery_timeout=settings.circuit_breaker_recovery_seconds,
        half_open_successes=settings.circuit_breaker_half_open_successes,
    )

    db_manager: Optional[DatabaseManager] = None
    if store is None:
        if settings.session_store == "sql":
            db_manager = init_db(settings.database_url, echo=settings.database_echo)
            store = SqlSessionStore(db_manager)
        else:
            store = InMemorySessionStore(max_sessions=settings.max_sessions_in_memory)

    publisher = ProgressPublisher(
        subscriber_buffer_size=settings.progress_buffer_size,
        history_size=settings.progress_history_size,
    )
    orchestrator = AnalysisOrchestrator(
        adapters,
        status_source=health,
        store=store,
        publisher=publisher,
        config=config,
        health=health,
    )
    logger.info(
        "services_configured",
        providers=sorted(adapters),
        session_store=type(store).__name__,
        analysis_enabled=settings.analysis_enabled,
    )
    return ServiceContainer(
        settings=settings,
        adapters=adapters,
        health=health,
        store=store,
        publisher=publisher,
        orchestrator=orchestrator,
        db_manager=db_manager,
    )


# Global service container
_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Get the global service container, building it on first use."""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def set_container(container: ServiceContainer) -> None:
    global _container
    _container = container


def reset_container() -> None:
    global _container
    _container = None


def get_orchestrator() -> AnalysisOrchestrator:
    return get_container().orchestrator


def get_publisher() -> ProgressPublisher:
    return get_container().publisher


def get_health() -> ProviderHealthRegistry:
    return get_container().health


__all__ = [
    "ServiceContainer",
    "build_container",
    "get_container",
    "get_health",
    "get_orchestrator",
    "get_publisher",
    "get_settings",
    "reset_container",
    "set_container",
]
