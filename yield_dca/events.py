"""Engine events.

Every state change emits an event, so the epoch log and position history
can be rebuilt off-engine:

.. code-block:: python

    store = reconstruct_epoch_store(engine.events)
    assert [r.epoch for r in store] == [r.epoch for r in engine.epoch_store]

    df = events_to_dataframe(engine.events)
    print(df[df.event == "DCAExecuted"])

Events of a call that fails are dropped together with its state changes.
"""

import dataclasses
import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator, Type, TypeVar

import pandas as pd
from eth_typing import HexAddress

from yield_dca.dca.epoch import EpochRecord, EpochStore
from yield_dca.dca.journal import StateJournal


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EngineEvent:
    """Base class for events."""

    @property
    def name(self) -> str:
        return self.__class__.__name__


@dataclass(slots=True, frozen=True)
class Deposited(EngineEvent):
    owner: HexAddress
    epoch: int
    shares: int

    #: Asset value credited as principal
    principal_assets: int


@dataclass(slots=True, frozen=True)
class Withdrawn(EngineEvent):
    owner: HexAddress
    epoch: int

    #: Zero for a claim-only withdrawal
    shares: int

    #: Principal removed from the position
    principal_assets: int

    #: Target tokens paid out
    tokens_paid: int


@dataclass(slots=True, frozen=True)
class DCAExecuted(EngineEvent):
    epoch: int
    executed_at: datetime.datetime
    total_principal: int
    shares_redeemed: int
    yield_converted: int
    target_tokens_bought: int
    shares_held: int
    value_held: int

    @property
    def share_price(self) -> Decimal:
        return Decimal(self.value_held) / Decimal(self.shares_held)

    @property
    def conversion_rate(self) -> Decimal:
        if self.yield_converted == 0:
            return Decimal(0)
        return Decimal(self.target_tokens_bought) / Decimal(self.yield_converted)

    @staticmethod
    def from_record(record: EpochRecord) -> "DCAExecuted":
        return DCAExecuted(
            epoch=record.epoch,
            executed_at=record.executed_at,
            total_principal=record.total_principal,
            shares_redeemed=record.shares_redeemed,
            yield_converted=record.yield_converted,
            target_tokens_bought=record.target_tokens_bought,
            shares_held=record.shares_held,
            value_held=record.value_held,
        )

    def to_record(self) -> EpochRecord:
        return EpochRecord(
            epoch=self.epoch,
            executed_at=self.executed_at,
            total_principal=self.total_principal,
            shares_redeemed=self.shares_redeemed,
            yield_converted=self.yield_converted,
            target_tokens_bought=self.target_tokens_bought,
            shares_held=self.shares_held,
            value_held=self.value_held,
        )


@dataclass(slots=True, frozen=True)
class PendingAllocationDistributed(EngineEvent):
    owner: HexAddress
    amount: int

    #: Pool left after this payout
    remaining: int


@dataclass(slots=True, frozen=True)
class EpochIntervalUpdated(EngineEvent):
    caller: HexAddress
    old_interval: datetime.timedelta
    new_interval: datetime.timedelta


@dataclass(slots=True, frozen=True)
class ConverterUpdated(EngineEvent):
    caller: HexAddress
    old_converter: HexAddress
    new_converter: HexAddress


@dataclass(slots=True, frozen=True)
class MinYieldPerEpochUpdated(EngineEvent):
    caller: HexAddress
    old_value: Decimal
    new_value: Decimal


@dataclass(slots=True, frozen=True)
class RoleGranted(EngineEvent):
    role: bytes
    account: HexAddress
    sender: HexAddress


@dataclass(slots=True, frozen=True)
class RoleRevoked(EngineEvent):
    role: bytes
    account: HexAddress
    sender: HexAddress


@dataclass(slots=True, frozen=True)
class EngineDeployed(EngineEvent):
    factory: HexAddress
    engine: HexAddress
    vault: HexAddress


EventT = TypeVar("EventT", bound=EngineEvent)


class EventLog:
    """Ordered events of one engine or factory."""

    def __init__(self, journal: StateJournal | None = None):
        self.journal = journal
        self._events: list[EngineEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[EngineEvent]:
        return iter(self._events)

    def __getitem__(self, idx):
        return self._events[idx]

    def emit(self, event: EngineEvent):
        assert isinstance(event, EngineEvent), f"Got {type(event)}"
        self._events.append(event)
        if self.journal is not None:
            self.journal.on_rollback(self._events.pop)
        logger.debug("Event %s", event)

    def filter(self, event_type: Type[EventT]) -> list[EventT]:
        return [e for e in self._events if isinstance(e, event_type)]


def reconstruct_epoch_store(events: Iterable[EngineEvent]) -> EpochStore:
    """Rebuild the epoch log from ``DCAExecuted`` events.

    :raise AssertionError:
        If events are missing or out of order
    """
    store = EpochStore(StateJournal())
    for event in events:
        if isinstance(event, DCAExecuted):
            store.append(event.to_record())
    return store


def _export_value(value):
    if isinstance(value, bytes):
        return "0x" + bytes(value).hex()
    return value


def events_to_dataframe(events: Iterable[EngineEvent]) -> pd.DataFrame:
    """Flatten events to a DataFrame, one row per event.

    - ``event`` column holds the event name
    - Columns not used by an event type are NaN on its rows
    - Role ids are exported as hex strings
    """
    rows = []
    for idx, event in enumerate(events):
        row = {"event_index": idx, "event": event.name}
        for field in dataclasses.fields(event):
            row[field.name] = _export_value(getattr(event, field.name))
        rows.append(row)
    return pd.DataFrame(rows)
