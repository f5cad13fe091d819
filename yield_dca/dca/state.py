"""Engine-wide state."""

import datetime
from dataclasses import dataclass

from yield_dca.constants import FIRST_EPOCH


@dataclass(slots=True)
class GlobalState:
    """Aggregate state of one engine.

    Only the epoch executor and the deposit/withdraw controller change this.
    """

    #: Epoch that has not been executed yet
    current_epoch: int

    #: When the current epoch started, naive UTC
    epoch_start_time: datetime.datetime

    #: Minimum time between executions
    epoch_interval: datetime.timedelta

    #: Sum of principal over all positions, asset raw units
    total_principal: int = 0

    #: Target tokens bought but not attributed to any position yet, raw units
    pending_allocation: int = 0

    def __post_init__(self):
        assert self.current_epoch >= FIRST_EPOCH
        assert self.epoch_start_time.tzinfo is None, "Timestamp only accept naive UTC datetimes"

    def get_next_execution_time(self) -> datetime.datetime:
        return self.epoch_start_time + self.epoch_interval
