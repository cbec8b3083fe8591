from __future__ import annotations

from contextvars import ContextVar, Token

_request_db_time_ms: ContextVar[float | None] = ContextVar("request_db_time_ms", default=None)


def start_db_timer() -> Token:
    return _request_db_time_ms.set(0.0)


def stop_db_timer(token: Token) -> None:
    _request_db_time_ms.reset(token)


def add_db_time(delta_ms: float) -> None:
    elapsed = _request_db_time_ms.get()
    if elapsed is not None:
        _request_db_time_ms.set(elapsed + delta_ms)


def get_db_time_ms() -> float | None:
    return _request_db_time_ms.get()
