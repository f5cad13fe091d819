"""Epoch executor.

Turn the yield of all held vault shares into the target token, once per epoch.

- Reads only aggregate state: total principal and the vault value of everything the engine holds
- Never walks positions, settlement picks up the new record lazily
- Principal is never spent, only the excess value over it
"""

import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal

from eth_typing import HexAddress
from hexbytes import HexBytes

from yield_dca.config import EngineConfig
from yield_dca.constants import WAD
from yield_dca.converter import Converter, convert
from yield_dca.dca.epoch import EpochRecord, EpochStore
from yield_dca.dca.state import GlobalState
from yield_dca.errors import IntervalNotElapsed, NoPrincipal, NoYield, PreconditionError, YieldBelowMinimum
from yield_dca.utils import ceil_div
from yield_dca.value_source import TokenLedger, ValueSource


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class YieldQuote:
    """How much yield there is right now."""

    #: Vault shares the engine holds
    total_shares: int

    #: What they are worth, asset raw units
    current_value: int

    #: Principal snapshot, asset raw units
    total_principal: int

    #: ``current_value - total_principal``, can be negative
    yield_assets: int

    #: Shares to redeem to get the yield out
    yield_shares: int

    @property
    def share_price_raw(self) -> int:
        """Assets per 10**18 shares, as valued through our own holdings."""
        if self.total_shares == 0:
            return 0
        return self.current_value * WAD // self.total_shares

    @property
    def yield_fraction(self) -> Decimal:
        """Yield relative to principal, 0.05 means 5%."""
        if self.total_principal == 0:
            return Decimal(0)
        return Decimal(self.yield_assets) / Decimal(self.total_principal)


@dataclass(slots=True, frozen=True)
class ExecutionCheck:
    """Result of a dry run of the execution preconditions."""

    can_execute: bool

    #: Why not, human readable
    reason: str | None = None

    #: Exception class execute_dca() would raise
    error: type[PreconditionError] | None = None

    #: Yield at the time of the check, if we got that far
    quote: YieldQuote | None = None


def quote_yield(value_source: ValueSource, holder: HexAddress, total_principal: int) -> YieldQuote:
    """Value the shares of holder against the principal they carry."""
    total_shares = value_source.balance_of(holder)
    current_value = value_source.convert_to_assets(total_shares)
    yield_assets = current_value - total_principal
    yield_shares = 0
    if yield_assets > 0:
        # Positions are settled at current_value / total_shares, rounding their shares up.
        # Keep at least what they claim back when they settle.
        kept = ceil_div(total_principal * total_shares, current_value)
        yield_shares = min(value_source.convert_to_shares(yield_assets), total_shares - kept)
    return YieldQuote(
        total_shares=total_shares,
        current_value=current_value,
        total_principal=total_principal,
        yield_assets=yield_assets,
        yield_shares=yield_shares,
    )


def check_preconditions(
    state: GlobalState,
    config: EngineConfig,
    value_source: ValueSource,
    holder: HexAddress,
    now: datetime.datetime,
) -> YieldQuote:
    """Check everything execute_dca() needs, cheapest first.

    :raise IntervalNotElapsed:
    :raise NoPrincipal:
    :raise NoYield:
    :raise YieldBelowMinimum:

    :return:
        Current yield
    """
    next_time = state.get_next_execution_time()
    if now < next_time:
        raise IntervalNotElapsed(f"Epoch {state.current_epoch} can be executed at {next_time}, now is {now}")

    if state.total_principal == 0:
        raise NoPrincipal(f"No principal deposited, cannot execute epoch {state.current_epoch}")

    quote = quote_yield(value_source, holder, state.total_principal)

    if quote.yield_assets <= 0 or quote.yield_shares == 0:
        raise NoYield(f"No yield in epoch {state.current_epoch}: shares worth {quote.current_value}, principal {quote.total_principal}")

    if quote.yield_fraction < config.min_yield_per_epoch:
        raise YieldBelowMinimum(f"Yield {quote.yield_fraction:.6%} is below minimum {config.min_yield_per_epoch:.6%} in epoch {state.current_epoch}")

    return quote


def execute_epoch(
    state: GlobalState,
    config: EngineConfig,
    epoch_store: EpochStore,
    value_source: ValueSource,
    target_token: TokenLedger,
    converter: Converter,
    holder: HexAddress,
    min_tokens_out: int,
    routing_data: HexBytes | bytes,
    now: datetime.datetime,
) -> EpochRecord:
    """Redeem the yield, swap it and record the epoch.

    Caller is responsible for access control and for rolling back on failure.

    :return:
        The appended record
    """
    quote = check_preconditions(state, config, value_source, holder, now)

    logger.info(
        "Executing epoch %d: principal %d, value %d, yield %d (%.4f%%), redeeming %d shares",
        state.current_epoch,
        quote.total_principal,
        quote.current_value,
        quote.yield_assets,
        quote.yield_fraction * 100,
        quote.yield_shares,
    )

    assets = value_source.redeem(quote.yield_shares, holder, holder)
    if assets == 0:
        raise NoYield(f"Redeeming {quote.yield_shares} shares gave nothing in epoch {state.current_epoch}")

    conversion = convert(
        converter,
        token_in=value_source.asset.address,
        token_out=target_token.address,
        amount_in=assets,
        min_amount_out=min_tokens_out,
        routing_data=routing_data,
        sender=holder,
    )

    record = EpochRecord(
        epoch=state.current_epoch,
        executed_at=now,
        total_principal=state.total_principal,
        shares_redeemed=quote.yield_shares,
        yield_converted=assets,
        target_tokens_bought=conversion.amount_out,
        shares_held=quote.total_shares,
        value_held=quote.current_value,
    )
    epoch_store.append(record)

    state.current_epoch += 1
    state.epoch_start_time = now

    logger.info("Epoch %d done, bought %d target tokens at %s", record.epoch, record.target_tokens_bought, record.conversion_rate)
    return record
