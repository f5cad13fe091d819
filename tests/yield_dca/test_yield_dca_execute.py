"""Epoch execution preconditions and outcome."""

import datetime
from decimal import Decimal

import pytest
from eth_account import Account
from hexbytes import HexBytes

from yield_dca.config import EngineConfig
from yield_dca.constants import WAD
from yield_dca.dca.engine import YieldDCAEngine
from yield_dca.errors import AmountTooLow, IntervalNotElapsed, MissingRole, NoPrincipal, NoYield, YieldBelowMinimum
from yield_dca.events import DCAExecuted
from yield_dca.testing import FixedRateConverter


class MinIgnoringConverter(FixedRateConverter):
    """Swaps at a bad rate and does not check the minimum itself."""

    def swap(self, token_in, token_out, amount_in, min_amount_out, routing_data, sender) -> int:
        return super().swap(token_in, token_out, amount_in, 0, routing_data, sender)


def test_execute_interval_not_elapsed(engine, vault, keeper, alice, mint_shares):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.1"))
    with pytest.raises(IntervalNotElapsed):
        engine.execute_dca(keeper, 0)


def test_execute_no_principal(engine, clock, keeper):
    clock.advance(engine.epoch_interval)
    with pytest.raises(NoPrincipal):
        engine.execute_dca(keeper, 0)


def test_execute_no_yield_flat(engine, alice, mint_shares, run_epoch):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    with pytest.raises(NoYield):
        run_epoch()


def test_execute_no_yield_loss(engine, vault, alice, mint_shares, run_epoch):
    """Aggregate loss is reported as no yield."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.realise_loss(Decimal("0.2"))
    with pytest.raises(NoYield):
        run_epoch()


def test_execute_yield_below_minimum(vault, weth, converter, admin, keeper, clock, journal, alice, mint_shares):
    engine = YieldDCAEngine(
        address=Account.create().address,
        value_source=vault,
        target_token=weth,
        converter=converter,
        admin=admin,
        keeper=keeper,
        config=EngineConfig(min_yield_per_epoch=Decimal("0.01")),
        clock=clock,
        journal=journal,
    )
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.005"))
    clock.advance(engine.epoch_interval)

    with pytest.raises(YieldBelowMinimum) as exc_info:
        engine.execute_dca(keeper, 0)
    assert isinstance(exc_info.value, NoYield)

    vault.accrue_yield(Decimal("0.01"))
    record = engine.execute_dca(keeper, 0)
    assert record.epoch == 1


def test_execute_keeper_only(engine, vault, alice, mint_shares, clock):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    clock.advance(engine.epoch_interval)
    with pytest.raises(MissingRole):
        engine.execute_dca(alice, 0)


def test_execute_amount_too_low_reverts(engine, vault, usdc, alice, mint_shares, run_epoch):
    """Slippage failure leaves engine, vault and tokens as they were."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))

    with pytest.raises(AmountTooLow):
        run_epoch(min_tokens_out=10 * WAD)

    assert engine.current_epoch == 1
    assert len(engine.epoch_store) == 0
    assert engine.total_shares_held() == WAD
    assert usdc.balance_of(engine.address) == 0
    assert vault.total_assets == 3 * WAD // 2
    assert len(engine.events.filter(DCAExecuted)) == 0


def test_execute_engine_enforces_minimum(engine, usdc, weth, admin, keeper, vault, alice, mint_shares, clock, journal):
    """A converter that ignores the minimum is caught by the engine."""
    engine.set_converter(admin, MinIgnoringConverter(usdc, weth, rate=Decimal(1), journal=journal))
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    clock.advance(engine.epoch_interval)

    with pytest.raises(AmountTooLow) as exc_info:
        engine.execute_dca(keeper, min_tokens_out=WAD)

    assert exc_info.value.amount_out == 499999999999999999
    assert exc_info.value.min_amount_out == WAD
    assert weth.total_supply == 0
    assert engine.current_epoch == 1


def test_execute_records_epoch(engine, vault, converter, keeper, alice, mint_shares, clock):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    clock.advance(engine.epoch_interval)

    record = engine.execute_dca(keeper, min_tokens_out=WAD, routing_data=b"\x01\x02")

    assert record.epoch == 1
    assert record.executed_at == clock.now
    assert record.total_principal == WAD
    assert record.share_price_raw == 3 * WAD // 2
    assert record.shares_redeemed == 333333333333333333
    assert record.yield_converted == 499999999999999999
    assert record.target_tokens_bought == 1499999999999999997
    assert record.conversion_rate == Decimal(3)
    assert converter.last_routing_data == HexBytes(b"\x01\x02")

    assert engine.current_epoch == 2
    assert engine.state.epoch_start_time == clock.now
    assert engine.target_token_balance() == record.target_tokens_bought

    # Positions are not touched by execution
    assert engine.get_position(alice).principal_shares == WAD
    assert engine.get_position(alice).checkpoint_epoch == 1

    event = engine.events.filter(DCAExecuted)[0]
    assert event.to_record() == record


def test_execute_epochs_are_monotonic(engine, vault, alice, mint_shares, run_epoch, keeper):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    records = []
    for _ in range(3):
        vault.accrue_yield(Decimal("0.01"))
        records.append(run_epoch())

    assert [r.epoch for r in records] == [1, 2, 3]
    assert engine.current_epoch == 4
    assert [r.executed_at for r in records] == sorted(r.executed_at for r in records)

    # Interval restarts from the last execution
    vault.accrue_yield(Decimal("0.01"))
    with pytest.raises(IntervalNotElapsed):
        engine.execute_dca(keeper, 0)


def test_can_execute_dca(engine, vault, alice, mint_shares, clock):
    check = engine.can_execute_dca()
    assert not check.can_execute
    assert check.error is IntervalNotElapsed

    clock.advance(datetime.timedelta(weeks=2))
    check = engine.can_execute_dca()
    assert check.error is NoPrincipal

    engine.deposit(alice, alice, mint_shares(alice, WAD))
    assert engine.can_execute_dca().error is NoYield

    vault.accrue_yield(Decimal("0.05"))
    check = engine.can_execute_dca()
    assert check.can_execute
    assert check.reason is None
    assert check.quote.yield_assets == pytest.approx(WAD * 5 // 100, rel=1e-12)
    assert check.quote.yield_fraction == pytest.approx(Decimal("0.05"))

    # Dry run changes nothing
    assert engine.current_epoch == 1
    assert engine.total_shares_held() == WAD
