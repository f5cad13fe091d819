"""Positions far behind the current epoch."""

from decimal import Decimal

import pytest

from yield_dca.config import EngineConfig
from yield_dca.constants import WAD
from yield_dca.errors import NotPositionOwner, SettlementBacklog


@pytest.fixture()
def config() -> EngineConfig:
    """Replay at most 10 epochs per call."""
    return EngineConfig(max_settlement_epochs=10)


def test_withdraw_refuses_backlog(engine, vault, alice, mint_shares, run_epoch):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    for _ in range(25):
        vault.accrue_yield(Decimal("0.01"))
        run_epoch()

    with pytest.raises(SettlementBacklog) as exc_info:
        engine.withdraw(alice, alice, 0)

    assert exc_info.value.epochs_behind == 25
    assert exc_info.value.owner == alice
    assert engine.get_position(alice).checkpoint_epoch == 1


def test_settle_in_chunks_then_withdraw(engine, vault, alice, bob, mint_shares, run_epoch):
    """Chunked catch-up gives the same result as an unlimited replay."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    for _ in range(25):
        vault.accrue_yield(Decimal("0.01"))
        run_epoch()

    expected = engine.preview_position(alice)

    with pytest.raises(NotPositionOwner):
        engine.settle(bob, alice)

    first = engine.settle(alice, alice)
    assert first.checkpoint_epoch == 11
    assert len(first.claims) == 10
    engine.settle(alice, alice, max_epochs=4)
    assert engine.get_position(alice).checkpoint_epoch == 15
    engine.settle(alice, alice)
    assert engine.get_position(alice).checkpoint_epoch == 25
    last = engine.settle(alice, alice)
    assert last.checkpoint_epoch == 26
    assert engine.settle(alice, alice).is_noop()

    position = engine.get_position(alice)
    assert position.settled_token_balance == expected.settled_token_balance
    assert position.principal_shares == expected.principal_shares

    paid = engine.withdraw(alice, alice, position.principal_shares)
    assert paid == engine.epoch_store.get_total_tokens_bought()
    assert engine.target_token_balance() == 0


def test_deposit_refuses_backlog(engine, vault, alice, mint_shares, run_epoch):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    for _ in range(11):
        vault.accrue_yield(Decimal("0.01"))
        run_epoch()

    with pytest.raises(SettlementBacklog):
        engine.deposit(alice, alice, mint_shares(alice, WAD))

    # Exactly at the limit is fine
    engine.settle(alice, alice, max_epochs=1)
    position = engine.deposit(alice, alice, mint_shares(alice, WAD))
    assert position.checkpoint_epoch == 12
