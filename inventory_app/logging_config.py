from __future__ import annotations

import logging

from inventory_app.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class _ExtraFormatter(logging.Formatter):
    """Appends `extra={...}` context to the rendered line."""

    _RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        context = {key: value for key, value in record.__dict__.items() if key not in self._RESERVED}
        if not context:
            return rendered
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
        return f"{rendered} {pairs}"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)
    if any(getattr(handler, "_inventory_app_handler", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(_ExtraFormatter(_LOG_FORMAT))
    handler._inventory_app_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
