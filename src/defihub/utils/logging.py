"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from defihub.config import LogFormat, Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = settings or get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # 根据格式选择渲染器
    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


# 便捷日志函数
def log_swap(
    logger: structlog.stdlib.BoundLogger,
    *,
    user: str,
    token_in: str,
    token_out: str,
    amount_in: Any,
    amount_out: Any,
    **kwargs: Any,
) -> None:
    """记录兑换成交。"""
    logger.info(
        "swap_executed",
        user=user,
        token_in=token_in,
        token_out=token_out,
        amount_in=str(amount_in),
        amount_out=str(amount_out),
        **kwargs,
    )


def log_position_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event: str,
    user: str,
    key: str,
    **kwargs: Any,
) -> None:
    """记录仓位变更（存款、借款、质押、开仓等）。"""
    logger.info(
        event,
        user=user,
        key=key,
        **{k: str(v) if v is not None else None for k, v in kwargs.items()},
    )


def log_liquidation(
    logger: structlog.stdlib.BoundLogger,
    *,
    kind: str,
    record_id: int,
    user: str,
    **kwargs: Any,
) -> None:
    """记录清算事件。"""
    logger.warning(
        "liquidation",
        kind=kind,
        record_id=record_id,
        user=user,
        **{k: str(v) for k, v in kwargs.items()},
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )
