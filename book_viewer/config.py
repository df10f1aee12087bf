"""
Runtime configuration and logging setup.

EngineConfig is built by the CLI (see main.py) and handed to the client.
Defaults target the public Coinbase Exchange endpoints.
"""

from __future__ import annotations

import random
import sys
from dataclasses import dataclass, field
from decimal import Decimal

from loguru import logger

# Coinbase Exchange endpoints
WS_URL = "wss://ws-feed.exchange.coinbase.com"
REST_URL = "https://api.exchange.coinbase.com/products"

DEFAULT_CHANNELS = ("level2_batch", "ticker")

# Selectable aggregation increments, ascending. 0 = no aggregation.
CANONICAL_INCREMENTS: tuple[Decimal, ...] = (
    Decimal("0"),
    Decimal("0.01"),
    Decimal("0.05"),
    Decimal("0.10"),
    Decimal("0.50"),
)

DEFAULT_DEPTH = 20

# Wire numbers outside these bounds are treated as malformed
MIN_PRICE = Decimal("1e-10")
MAX_MAGNITUDE = Decimal("1e15")

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | {message}"
)


@dataclass
class BackoffPolicy:
    """Exponential reconnect backoff with optional jitter."""

    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: bool = True

    def compute_delay(self, attempt: int) -> float:
        """Delay in seconds before reconnect attempt `attempt` (0-indexed)."""
        delay = min(self.base_delay * (self.factor ** attempt), self.max_delay)
        if self.jitter:
            # Half jitter: [delay/2, delay]
            delay = random.uniform(delay / 2, delay)
        return delay


@dataclass
class EngineConfig:
    """Everything the client needs to connect, subscribe and project."""

    instrument: str = "BTC-USD"
    ws_url: str = WS_URL
    rest_url: str = REST_URL
    channels: tuple[str, ...] = DEFAULT_CHANNELS
    depth: int = DEFAULT_DEPTH
    increment: Decimal = Decimal("0")
    increments: tuple[Decimal, ...] = CANONICAL_INCREMENTS
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    max_reconnect_failures: int = 5
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.depth <= 0:
            raise ValueError(f"depth must be positive, got {self.depth}")
        if self.max_reconnect_failures <= 0:
            raise ValueError("max_reconnect_failures must be positive")
        self.increment = check_increment(Decimal(self.increment))
        self.increments = tuple(sorted(Decimal(i) for i in self.increments))


def check_increment(value: Decimal) -> Decimal:
    """Return `value` if it is 0 or a usable bucket width, else raise ValueError."""
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid aggregation increment: {value}")
    if value != 0 and not MIN_PRICE <= value <= MAX_MAGNITUDE:
        raise ValueError(f"Aggregation increment out of range: {value}")
    return value


def setup_logging(level: str = "INFO", sink=None) -> None:
    """
    Configure loguru with a single sink.

    Args:
        level: Minimum level name (TRACE, DEBUG, INFO, WARNING, ERROR)
        sink: Where to write; stderr by default. The TUI passes a file path.
    """
    logger.remove()
    logger.add(
        sink if sink is not None else sys.stderr,
        format=LOG_FORMAT,
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )
