"""
Structured logging setup for the organic trader
Uses structlog on top of stdlib logging. Events logged inside a trade cycle
carry that cycle's side, delivery strategy and wallet via contextvars.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import structlog
from structlog.typing import EventDict, Processor


TRADE_CONTEXT_KEYS = ("side", "strategy", "wallet")


def add_timestamp(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = method_name
    return event_dict


def shorten_wallet(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Abbreviate wallet pubkeys to first/last four characters for console output"""
    wallet = event_dict.get("wallet")
    if isinstance(wallet, str) and len(wallet) > 12:
        event_dict["wallet"] = f"{wallet[:4]}..{wallet[-4:]}"
    return event_dict


@contextmanager
def trade_context(side: str, strategy: str, wallet: str) -> Iterator[None]:
    """
    Bind trade context to every event logged in this block

    Context is stored in contextvars, so concurrent buy and sell loops each
    see only their own cycle.

    Example:
        with trade_context("buy", "fast", str(keypair.pubkey())):
            logger.info("random_buy_started")   # carries side/strategy/wallet
    """
    with structlog.contextvars.bound_contextvars(side=side, strategy=strategy, wallet=wallet):
        yield


def _processors(format: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
        return processors

    try:
        import colorama  # noqa: F401
        use_colors = True
    except ImportError:
        use_colors = False

    processors.append(shorten_wallet)
    processors.append(
        structlog.dev.ConsoleRenderer(colors=use_colors, exception_formatter=structlog.dev.plain_traceback)
    )
    return processors


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structured logging for the trader

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: "json" for one object per line, "console" for humans
            (console output abbreviates wallet pubkeys)
        output_file: Optional file path that receives a copy of every event
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(output_file)
        file_handler.setLevel(numeric_level)
        logging.root.addHandler(file_handler)

    structlog.configure(
        processors=_processors(format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
