"""Epoch store.

Append-only log of DCA executions, one :py:class:`EpochRecord` per epoch.

Positions replay these records lazily when they are settled. Because every position
rounds its share down, the sum of individual shares can be less than what was bought.
We do not try to find out per call. Instead each epoch carries an :py:class:`EpochTally`
of how much principal has settled it so far. When all principal that was present
at execution time has settled the epoch, whatever was not distributed is released
to the pending allocation pool.
"""

import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator

from yield_dca.constants import FIRST_EPOCH, WAD
from yield_dca.dca.journal import StateJournal


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EpochRecord:
    """One executed conversion.

    Never mutated after it has been appended.
    """

    #: Epoch id, starting from 1
    epoch: int

    #: When execute_dca() ran, naive UTC
    executed_at: datetime.datetime

    #: Sum of all position principal just before execution, asset raw units
    total_principal: int

    #: Vault shares we redeemed to get the yield out
    shares_redeemed: int

    #: Asset amount we got from the redemption and sent to the converter, raw units
    yield_converted: int

    #: Exactly what the converter returned, target token raw units
    target_tokens_bought: int

    #: Vault shares the engine held just before the yield was redeemed
    shares_held: int

    #: What those shares were worth, asset raw units.
    #:
    #: ``value_held / shares_held`` is the share price settlement uses. It is the same ratio
    #: the yield shares were computed from, so positions never claim more shares than
    #: the engine kept, whatever the share and asset decimals are.
    value_held: int

    def __post_init__(self):
        assert self.epoch >= FIRST_EPOCH, f"Bad epoch {self.epoch}"
        assert isinstance(self.executed_at, datetime.datetime)
        assert self.executed_at.tzinfo is None, "Timestamp only accept naive UTC datetimes"
        assert self.total_principal > 0
        assert self.shares_held > 0
        assert self.value_held > 0
        assert self.target_tokens_bought >= 0

    @property
    def share_price_raw(self) -> int:
        """Assets per 10**18 shares at execution time, for display."""
        return self.value_held * WAD // self.shares_held

    @property
    def share_price(self) -> Decimal:
        """Vault share price in raw assets per raw share."""
        return Decimal(self.value_held) / Decimal(self.shares_held)

    @property
    def conversion_rate(self) -> Decimal:
        """Target tokens received per converted asset unit."""
        if self.yield_converted == 0:
            return Decimal(0)
        return Decimal(self.target_tokens_bought) / Decimal(self.yield_converted)


@dataclass(slots=True)
class EpochTally:
    """Settlement progress of one epoch, aggregated over all positions."""

    #: Principal of positions that have settled this epoch, asset raw units
    principal_settled: int = 0

    #: Target tokens credited to those positions
    tokens_distributed: int = 0

    #: Remainder has been released to the pending pool
    closed: bool = False


@dataclass(slots=True, frozen=True)
class EpochClaim:
    """What one position took from one epoch during settlement."""

    epoch: int

    #: Principal the position had while settling this epoch
    principal: int

    #: Target tokens credited, zero when withheld
    tokens: int

    #: Position was underwater at the epoch share price
    withheld: bool


class EpochStore:
    """Epoch records and their settlement tallies."""

    def __init__(self, journal: StateJournal):
        self.journal = journal
        self._records: list[EpochRecord] = []
        self._tallies: dict[int, EpochTally] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[EpochRecord]:
        return iter(self._records)

    @property
    def next_epoch(self) -> int:
        """Id the next appended record must have."""
        return FIRST_EPOCH + len(self._records)

    def get_latest(self) -> EpochRecord | None:
        if not self._records:
            return None
        return self._records[-1]

    def get(self, epoch: int) -> EpochRecord:
        assert FIRST_EPOCH <= epoch < self.next_epoch, f"No record for epoch {epoch}, we have {len(self._records)} records"
        return self._records[epoch - FIRST_EPOCH]

    def iterate_range(self, start: int, stop: int) -> Iterator[EpochRecord]:
        """Records for epochs ``[start, stop)``."""
        assert start >= FIRST_EPOCH
        assert stop <= self.next_epoch, f"Epoch {stop - 1} has not been executed yet"
        for idx in range(start - FIRST_EPOCH, stop - FIRST_EPOCH):
            yield self._records[idx]

    def append(self, record: EpochRecord):
        assert isinstance(record, EpochRecord), f"Got {type(record)}"
        assert record.epoch == self.next_epoch, f"Expected record for epoch {self.next_epoch}, got {record.epoch}"
        self._records.append(record)
        self.journal.on_rollback(self._records.pop)

    def get_tally(self, epoch: int) -> EpochTally:
        """Settlement progress, an empty tally if nobody has settled the epoch yet."""
        return self._tallies.get(epoch, EpochTally())

    def apply_claims(self, claims: Iterable[EpochClaim]) -> int:
        """Book settlement claims to the epoch tallies.

        :return:
            Target tokens released to the pending allocation pool
            because some epochs got fully settled by these claims
        """
        released = 0
        for claim in claims:
            record = self.get(claim.epoch)
            self.journal.remember(self._tallies, claim.epoch)
            old = self._tallies.get(claim.epoch)
            tally = EpochTally() if old is None else EpochTally(old.principal_settled, old.tokens_distributed, old.closed)

            assert not tally.closed, f"Epoch {claim.epoch} settled twice"
            tally.principal_settled += claim.principal
            tally.tokens_distributed += claim.tokens

            assert tally.principal_settled <= record.total_principal, f"Epoch {claim.epoch} settled {tally.principal_settled} principal, only {record.total_principal} was there"
            assert tally.tokens_distributed <= record.target_tokens_bought, f"Epoch {claim.epoch} distributed {tally.tokens_distributed}, only {record.target_tokens_bought} was bought"

            if tally.principal_settled == record.total_principal:
                remainder = record.target_tokens_bought - tally.tokens_distributed
                tally.closed = True
                released += remainder
                logger.debug("Epoch %d fully settled, releasing %d undistributed tokens", claim.epoch, remainder)

            self._tallies[claim.epoch] = tally

        return released

    def get_open_epochs(self) -> list[int]:
        """Epochs some principal still has to settle."""
        return [r.epoch for r in self._records if not self.get_tally(r.epoch).closed]

    def get_total_tokens_bought(self) -> int:
        return sum(r.target_tokens_bought for r in self._records)
