"""Request- and session-scoped context helpers.

Values bound here also land in ``structlog.contextvars`` so every log line
emitted inside the context carries them.
"""

from __future__ import annotations

from contextvars import ContextVar, Token

import structlog

_correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str) -> Token:
    """Bind the correlation identifier to the current context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    return _correlation_id_ctx.set(correlation_id)


def get_correlation_id() -> str | None:
    """Retrieve the correlation identifier for the current context."""
    return _correlation_id_ctx.get()


def reset_correlation_id(token: Token) -> None:
    """Reset the correlation identifier context to a previous state."""
    _correlation_id_ctx.reset(token)
    structlog.contextvars.unbind_contextvars("correlation_id")


def bind_session_context(session_id: str) -> None:
    """Tag log output of the running task with the analysis session id.

    Call from inside the session's own task; asyncio copies the context at
    task creation so the binding does not leak to other sessions.
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)
