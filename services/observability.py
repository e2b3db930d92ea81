from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)


def set_run_id(value: str | None) -> None:
    _run_id.set(value)


def get_run_id() -> str | None:
    return _run_id.get()


@contextmanager
def run_scope(run_id: str) -> Iterator[None]:
    token = _run_id.set(run_id)
    try:
        yield
    finally:
        _run_id.reset(token)


class RunIdFilter(logging.Filter):
    """Adds ``run_id`` to every record so formats can use ``%(run_id)s``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format="%(levelname)s %(name)s [run=%(run_id)s]: %(message)s")
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RunIdFilter) for f in handler.filters):
            handler.addFilter(RunIdFilter())
