"""Deposit and withdraw flows of the engine."""

from decimal import Decimal

import pytest

from yield_dca.constants import WAD
from yield_dca.errors import InsufficientShares, NoDepositFound, NotPositionOwner, ZeroAmount
from yield_dca.events import Deposited, Withdrawn
from yield_dca.testing import SimulatedRevert


def test_deposit_opens_position(engine, vault, alice, mint_shares):
    shares = mint_shares(alice, WAD)
    assert shares == WAD

    position = engine.deposit(alice, alice, shares)

    assert position.principal_shares == WAD
    assert position.principal_assets == WAD
    assert position.checkpoint_epoch == 1
    assert engine.total_principal == WAD
    assert engine.total_shares_held() == WAD
    assert vault.balance_of(alice) == 0

    deposited = engine.events.filter(Deposited)
    assert len(deposited) == 1
    assert deposited[0].owner == alice
    assert deposited[0].principal_assets == WAD


def test_deposit_zero(engine, alice):
    with pytest.raises(ZeroAmount):
        engine.deposit(alice, alice, 0)


def test_deposit_more_than_owned_reverts(engine, vault, alice, mint_shares):
    """A failing share transfer leaves no position behind."""
    mint_shares(alice, WAD)
    with pytest.raises(SimulatedRevert):
        engine.deposit(alice, alice, 2 * WAD)

    assert engine.get_position(alice) is None
    assert engine.total_principal == 0
    assert len(engine.events.filter(Deposited)) == 0
    assert vault.balance_of(alice) == WAD


def test_deposit_assets(engine, usdc, vault, alice):
    """Deposit the underlying, the engine receives the vault shares."""
    usdc.mint(alice, WAD)
    position = engine.deposit_assets(alice, alice, WAD)

    assert position.principal_shares == WAD
    assert position.principal_assets == WAD
    assert usdc.balance_of(alice) == 0
    assert vault.balance_of(engine.address) == WAD


def test_withdraw_unknown_owner(engine, alice):
    with pytest.raises(NoDepositFound):
        engine.withdraw(alice, alice, 0)


def test_withdraw_too_much(engine, alice, mint_shares):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    with pytest.raises(InsufficientShares):
        engine.withdraw(alice, alice, WAD + 1)


def test_withdraw_other_owner(engine, alice, bob, mint_shares):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    with pytest.raises(NotPositionOwner):
        engine.withdraw(bob, alice, WAD)


def test_claim_only_withdraw(engine, vault, weth, alice, mint_shares, run_epoch):
    """withdraw(0) pays the target tokens and leaves principal in."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    record = run_epoch()

    paid = engine.withdraw(alice, alice, 0)

    assert paid == record.target_tokens_bought
    assert weth.balance_of(alice) == paid
    position = engine.get_position(alice)
    assert position.principal_assets == WAD
    assert position.principal_shares == 666666666666666667
    assert position.settled_token_balance == 0
    assert position.checkpoint_epoch == 2

    # Nothing more to claim until the next epoch
    assert engine.withdraw(alice, alice, 0) == 0


def test_partial_withdraw_pays_all_tokens(engine, vault, weth, alice, mint_shares, run_epoch):
    """Principal leaves pro rata, the target tokens leave in full."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    record = run_epoch()

    settled = engine.preview_position(alice)
    half = settled.principal_shares // 2
    paid = engine.withdraw(alice, alice, half)

    assert paid == record.target_tokens_bought
    assert weth.balance_of(alice) == paid
    assert vault.balance_of(alice) == half

    position = engine.get_position(alice)
    assert position.principal_shares == settled.principal_shares - half
    assert position.principal_assets == pytest.approx(WAD // 2, rel=1e-9)
    assert engine.total_principal == position.principal_assets

    withdrawn = engine.events.filter(Withdrawn)[-1]
    assert withdrawn.shares == half
    assert withdrawn.tokens_paid == paid


def test_full_exit_closes_position(engine, vault, usdc, alice, mint_shares, run_epoch):
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    run_epoch()

    shares = engine.preview_position(alice).principal_shares
    engine.withdraw(alice, alice, shares)

    assert engine.get_position(alice) is None
    assert engine.total_principal == 0
    assert engine.target_token_balance() == 0

    assets = vault.redeem(vault.balance_of(alice), alice, alice)
    assert assets == pytest.approx(WAD, rel=1e-5)


def test_deposit_settles_first(engine, vault, alice, mint_shares, run_epoch):
    """Topping up credits the tokens of the old principal before changing it."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    record = run_epoch()

    position = engine.deposit(alice, alice, mint_shares(alice, WAD))

    assert position.settled_token_balance == record.target_tokens_bought
    assert position.checkpoint_epoch == 2
    assert position.principal_assets == pytest.approx(2 * WAD, rel=1e-9)
    assert engine.total_principal == position.principal_assets


def test_preview_position(engine, vault, alice, mint_shares, run_epoch):
    """Preview settles a copy, stored state stays as it was."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    record = run_epoch()

    preview = engine.preview_position(alice)
    assert preview.settled_token_balance == record.target_tokens_bought
    assert preview.checkpoint_epoch == 2

    stored = engine.get_position(alice)
    assert stored.settled_token_balance == 0
    assert stored.checkpoint_epoch == 1

    assert engine.preview_position(engine.address) is None


def test_deposit_for_other_owner(engine, vault, usdc, alice, bob, mint_shares):
    """Nobody can pull the shares or assets of someone else into a position."""
    shares = mint_shares(alice, WAD)
    with pytest.raises(NotPositionOwner):
        engine.deposit(bob, alice, shares)

    usdc.mint(alice, WAD)
    with pytest.raises(NotPositionOwner):
        engine.deposit_assets(bob, alice, WAD)

    assert engine.get_position(alice) is None
    assert vault.balance_of(alice) == shares
    assert usdc.balance_of(alice) == WAD
    assert len(engine.events.filter(Deposited)) == 0


def test_claim_by_other_owner_does_not_settle(engine, vault, weth, alice, bob, mint_shares, run_epoch):
    """A third party cannot settle or claim a position, its checkpoint stays put."""
    engine.deposit(alice, alice, mint_shares(alice, WAD))
    vault.accrue_yield(Decimal("0.5"))
    run_epoch()

    with pytest.raises(NotPositionOwner):
        engine.withdraw(bob, alice, 0)

    position = engine.get_position(alice)
    assert position.checkpoint_epoch == 1
    assert position.principal_shares == WAD
    assert weth.balance_of(alice) == 0
    assert weth.balance_of(bob) == 0

    # Checksum casing does not matter
    assert engine.withdraw(alice.lower(), alice, 0) > 0
