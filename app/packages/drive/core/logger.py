"""日志配置模块：统一控制台/文件输出格式，并注入请求 ID 与存储上下文。"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Optional

from .config import get_settings

# 业务代码通过 ``extra`` 传入的上下文字段，JSON 输出时原样附带
_EXTRA_FIELDS = ("owner_id", "node_id", "storage_ref", "method", "path")


class _TZFormatter(logging.Formatter):
    """按 ``Settings.timezone`` 渲染时间戳，未指定 datefmt 时输出毫秒级 ISO-8601。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: D401
        dt = datetime.fromtimestamp(record.created, get_settings().timezone_info)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_TZFormatter):
    """ANSI 彩色格式化器：不同级别不同颜色，非 TTY 输出时自动关闭。"""

    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(
        self,
        fmt: str,
        datefmt: Optional[str] = None,
        style: str = "%",
        use_colors: Optional[bool] = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.use_colors = sys.stderr.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{message}{self.RESET}" if color else message


class JsonFormatter(_TZFormatter):
    """结构化 JSON 日志，便于采集端检索孤儿 Blob 等运维事件。"""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """把上下文中的 request_id 写入每一条 LogRecord。"""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = _request_id_ctx.get()
        return True


def _logger_entry(level: str) -> dict:
    return {"handlers": ["default", "file"], "level": level, "propagate": False}


def setup_logging() -> None:
    """初始化日志系统：控制台 + 按天滚动的文件日志，统一格式与级别。"""
    settings = get_settings()
    settings.log_directory.mkdir(parents=True, exist_ok=True)

    json_enabled = settings.log_json
    console_formatter = "json" if json_enabled else "standard"
    level = settings.log_level

    loggers = {name: _logger_entry(level) for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "app")}
    if settings.database_echo:
        loggers["sqlalchemy.engine"] = _logger_entry("INFO")

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "()": "app.packages.drive.core.logger.ColorFormatter",
                    "format": "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
                },
                "plain": {
                    "()": "app.packages.drive.core.logger._TZFormatter",
                    "format": "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
                },
                "json": {"()": "app.packages.drive.core.logger.JsonFormatter"},
            },
            "filters": {"request_id": {"()": "app.packages.drive.core.logger.RequestIdFilter"}},
            "handlers": {
                "default": {
                    "level": level,
                    "class": "logging.StreamHandler",
                    "formatter": console_formatter,
                    "filters": ["request_id"],
                },
                "file": {
                    "level": level,
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "json" if json_enabled else "plain",
                    "filename": str(settings.log_file_path),
                    "when": "midnight",
                    "backupCount": 14,
                    "encoding": "utf-8",
                    "delay": True,
                    "filters": ["request_id"],
                },
            },
            "loggers": loggers,
            "root": {"handlers": ["default", "file"], "level": level},
        }
    )


logger = logging.getLogger("app")


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()
