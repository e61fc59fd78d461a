"""Log context carried through contextvars.

HTTP requests and the per-user units of a progress repair both bind a
request ID and, once known, the user they act for. Structlog reads the
bound values through ``get_context``.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "trace_id": trace_id_var,
}


def new_request_id() -> str:
    return uuid4().hex


def get_request_id() -> str | None:
    """Request ID bound to the current context, if any."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Bind a request ID, generating one when the caller sent none."""
    value = request_id or new_request_id()
    request_id_var.set(value)
    return value


def set_user_id(user_id: str | UUID | None) -> None:
    """Bind the authenticated (or repaired) user."""
    user_id_var.set(None if user_id is None else str(user_id))


def set_trace_id(trace_id: str | None) -> None:
    trace_id_var.set(trace_id)


def get_context() -> dict[str, Any]:
    """Bound values only; unset ones are left out of log lines."""
    return {
        name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())
    }


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


class RequestContext:
    """Scope a request ID and user to a block, restoring the outer values.

    Usage:
        with RequestContext(user_id=user_id):
            logger.info("progress_repaired")
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | UUID | None = None,
    ) -> None:
        self.request_id = request_id
        self.user_id = user_id
        self._tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = []

    def __enter__(self) -> "RequestContext":
        request_id = self.request_id or get_request_id() or new_request_id()
        self._tokens.append((request_id_var, request_id_var.set(request_id)))
        if self.user_id is not None:
            self._tokens.append((user_id_var, user_id_var.set(str(self.user_id))))
        return self

    def __exit__(self, *_: object) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
