"""结构化日志模块。

structlog 架在标准库 logging 之上：控制台（彩色）或 JSON 两种渲染，
交易员 ID 通过 contextvars 绑定到同一线程内的所有日志事件。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from ai_futures.config import LogFormat, Settings, get_settings

Logger = structlog.stdlib.BoundLogger

# 第三方库的请求级日志太吵，只保留警告以上
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "binance")


def _final_processors(log_format: LogFormat) -> list[Processor]:
    if log_format == LogFormat.JSON:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(settings: Settings | None = None) -> None:
    """按配置初始化日志级别与输出格式，可重复调用。"""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_final_processors(settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Logger:
    """获取结构化日志记录器。"""
    return structlog.get_logger(name)


def bind_trader_context(trader_id: str, mode: str) -> None:
    """把交易员 ID 与运行模式绑定到当前线程的后续日志。"""
    structlog.contextvars.bind_contextvars(trader_id=trader_id, mode=mode)


def _emit(logger: Logger, ok: bool, event: str, **fields: Any) -> None:
    (logger.info if ok else logger.warning)(event, **fields)


# 便捷日志函数
def log_llm_call(
    logger: Logger, *, model: str, success: bool, latency_ms: float, **kwargs: Any
) -> None:
    """记录一次 LLM 调用及耗时。"""
    _emit(
        logger,
        success,
        "llm_call",
        model=model,
        success=success,
        latency_ms=round(latency_ms, 2),
        **kwargs,
    )


def log_order_execution(
    logger: Logger,
    *,
    symbol: str,
    action: str,
    quantity: float,
    status: str = "submitted",
    price: float | None = None,
    order_id: str | None = None,
    **kwargs: Any,
) -> None:
    """记录订单结果；rejected / failed 以 warning 级别输出。"""
    _emit(
        logger,
        status not in ("rejected", "failed"),
        "order_execution",
        symbol=symbol,
        action=action,
        quantity=quantity,
        price=price,
        order_id=order_id,
        status=status,
        **kwargs,
    )


def log_risk_event(logger: Logger, *, event_type: str, action: str, **kwargs: Any) -> None:
    """记录风控事件（冷却、阈值触发）。"""
    logger.warning("risk_event", event_type=event_type, action=action, **kwargs)


def log_trade_outcome(
    logger: Logger,
    *,
    symbol: str,
    side: str,
    pnl: float,
    pnl_pct: float,
    trigger: str,
    **kwargs: Any,
) -> None:
    """记录平仓结果；trigger 为 decision / manual / auto。"""
    logger.info(
        "trade_outcome",
        symbol=symbol,
        side=side,
        pnl=round(pnl, 4),
        pnl_pct=round(pnl_pct, 2),
        trigger=trigger,
        **kwargs,
    )


def log_cycle_summary(
    logger: Logger, *, cycle_number: int, success: bool, elapsed_ms: float, **kwargs: Any
) -> None:
    """记录决策周期汇总。"""
    _emit(
        logger,
        success,
        "cycle_completed",
        cycle_number=cycle_number,
        success=success,
        elapsed_ms=round(elapsed_ms, 2),
        **kwargs,
    )
