"""Engine configuration.

Example:

.. code-block:: python

    from yield_dca.config import EngineConfig, create_engine_config_from_env

    config = EngineConfig(
        epoch_interval=datetime.timedelta(weeks=1),
        min_yield_per_epoch=Decimal("0.001"),
    )

    # Or pick everything up from YIELD_DCA_* environment variables
    config = create_engine_config_from_env()
"""

import datetime
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from yield_dca.constants import (
    DEFAULT_EPOCH_INTERVAL,
    DEFAULT_MAX_EPOCH_INTERVAL,
    DEFAULT_MAX_SETTLEMENT_EPOCHS,
    DEFAULT_MIN_EPOCH_INTERVAL,
    DEFAULT_MIN_YIELD_PER_EPOCH,
    DEFAULT_SHARE_DUST_TOLERANCE,
    MAX_MIN_YIELD_PER_EPOCH,
)
from yield_dca.errors import IntervalOutOfBounds, InvalidParameter


@dataclass(slots=True)
class EngineConfig:
    """Tunable parameters of one :py:class:`yield_dca.dca.engine.YieldDCAEngine`.

    :param epoch_interval: Minimum time between two ``execute_dca()`` calls
    :param min_epoch_interval: Lower bound for :py:attr:`epoch_interval`
    :param max_epoch_interval: Upper bound for :py:attr:`epoch_interval`
    :param min_yield_per_epoch: Skip execution if yield / principal is below this fraction
    :param max_settlement_epochs: How many epochs deposit/withdraw replay before refusing with :py:class:`yield_dca.errors.SettlementBacklog`.
        ``None`` means no limit.
    :param share_dust_tolerance: Raw share units a withdrawal may be short and still succeed
    """

    epoch_interval: datetime.timedelta = DEFAULT_EPOCH_INTERVAL
    min_epoch_interval: datetime.timedelta = DEFAULT_MIN_EPOCH_INTERVAL
    max_epoch_interval: datetime.timedelta = DEFAULT_MAX_EPOCH_INTERVAL
    min_yield_per_epoch: Decimal = DEFAULT_MIN_YIELD_PER_EPOCH
    max_settlement_epochs: int | None = DEFAULT_MAX_SETTLEMENT_EPOCHS
    share_dust_tolerance: int = DEFAULT_SHARE_DUST_TOLERANCE

    def __post_init__(self):
        assert isinstance(self.epoch_interval, datetime.timedelta), f"Got {type(self.epoch_interval)}"
        assert isinstance(self.min_yield_per_epoch, Decimal), f"Got {type(self.min_yield_per_epoch)}"

        if self.min_epoch_interval > self.max_epoch_interval:
            raise InvalidParameter(f"min_epoch_interval {self.min_epoch_interval} is larger than max_epoch_interval {self.max_epoch_interval}")

        self.validate_epoch_interval(self.epoch_interval)
        validate_min_yield_per_epoch(self.min_yield_per_epoch)

        if self.max_settlement_epochs is not None and self.max_settlement_epochs < 1:
            raise InvalidParameter(f"max_settlement_epochs must be at least 1, got {self.max_settlement_epochs}")

        if self.share_dust_tolerance < 0:
            raise InvalidParameter(f"share_dust_tolerance cannot be negative: {self.share_dust_tolerance}")

    def validate_epoch_interval(self, interval: datetime.timedelta):
        """Check an epoch interval against the configured bounds.

        :raise IntervalOutOfBounds:
            If the interval is outside ``[min_epoch_interval, max_epoch_interval]``
        """
        if not (self.min_epoch_interval <= interval <= self.max_epoch_interval):
            raise IntervalOutOfBounds(f"Epoch interval {interval} outside bounds [{self.min_epoch_interval}, {self.max_epoch_interval}]")


def validate_min_yield_per_epoch(value: Decimal):
    """Minimum yield is a fraction in ``[0, MAX_MIN_YIELD_PER_EPOCH]``."""
    if not (0 <= value <= MAX_MIN_YIELD_PER_EPOCH):
        raise InvalidParameter(f"min_yield_per_epoch {value} outside bounds [0, {MAX_MIN_YIELD_PER_EPOCH}]")


def create_engine_config_from_env() -> EngineConfig:
    """Create EngineConfig from environment variables.

    Environment variables:
    - YIELD_DCA_EPOCH_INTERVAL_SECONDS: Time between executions (default: 2 weeks)
    - YIELD_DCA_MIN_EPOCH_INTERVAL_SECONDS: Lower bound for the interval (default: 1 day)
    - YIELD_DCA_MAX_EPOCH_INTERVAL_SECONDS: Upper bound for the interval (default: 10 weeks)
    - YIELD_DCA_MIN_YIELD_PER_EPOCH: Minimum yield fraction, e.g. ``0.001`` (default: 0)
    - YIELD_DCA_MAX_SETTLEMENT_EPOCHS: Replay limit, ``0`` or ``none`` disables it (default: 1000)
    - YIELD_DCA_SHARE_DUST_TOLERANCE: Raw share units (default: 1000)

    :return: Configured EngineConfig instance
    """

    def get_seconds(key: str, default: datetime.timedelta) -> datetime.timedelta:
        value = os.environ.get(key)
        return datetime.timedelta(seconds=int(value)) if value else default

    def get_decimal(key: str, default: Decimal) -> Decimal:
        value = os.environ.get(key)
        if not value:
            return default
        try:
            return Decimal(value)
        except InvalidOperation as e:
            raise InvalidParameter(f"Cannot parse {key}={value} as a decimal") from e

    def get_optional_int(key: str, default: int | None) -> int | None:
        value = os.environ.get(key, "").lower()
        if value in ("", "default"):
            return default
        elif value in ("0", "none"):
            return None
        return int(value)

    dust = os.environ.get("YIELD_DCA_SHARE_DUST_TOLERANCE")

    return EngineConfig(
        epoch_interval=get_seconds("YIELD_DCA_EPOCH_INTERVAL_SECONDS", DEFAULT_EPOCH_INTERVAL),
        min_epoch_interval=get_seconds("YIELD_DCA_MIN_EPOCH_INTERVAL_SECONDS", DEFAULT_MIN_EPOCH_INTERVAL),
        max_epoch_interval=get_seconds("YIELD_DCA_MAX_EPOCH_INTERVAL_SECONDS", DEFAULT_MAX_EPOCH_INTERVAL),
        min_yield_per_epoch=get_decimal("YIELD_DCA_MIN_YIELD_PER_EPOCH", DEFAULT_MIN_YIELD_PER_EPOCH),
        max_settlement_epochs=get_optional_int("YIELD_DCA_MAX_SETTLEMENT_EPOCHS", DEFAULT_MAX_SETTLEMENT_EPOCHS),
        share_dust_tolerance=int(dust) if dust else DEFAULT_SHARE_DUST_TOLERANCE,
    )
