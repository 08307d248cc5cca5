"""统一日志获取入口，附带上下文字段。"""

from __future__ import annotations

import logging
from typing import Any, Dict

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter that merges bound context into ``extra`` and the message."""

    def process(self, msg: str, kwargs: Dict[str, Any]):
        extra = kwargs.pop("extra", {})
        merged = {**self.extra, **extra}
        if merged:
            kwargs["extra"] = merged
            context = " ".join(f"{key}={value}" for key, value in merged.items())
            msg = f"{msg} [{context}]"
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextLogger:
    """返回绑定给定上下文的 LoggerAdapter。"""

    logger = logging.getLogger(name)
    return ContextLogger(logger, context or {})


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stderr handler; used by the command line entry point."""

    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"unknown log level: {level}")
    logging.basicConfig(level=numeric, format=_FORMAT)


__all__ = ["ContextLogger", "configure_logging", "get_logger"]
