"""Yield DCA engine fixtures.

Everything runs against in-memory collaborators sharing one undo journal with the engine.
"""

import datetime
from decimal import Decimal
from typing import Callable

import pytest
from eth_account import Account
from eth_typing import HexAddress

from yield_dca.config import EngineConfig
from yield_dca.dca.engine import YieldDCAEngine
from yield_dca.dca.epoch import EpochRecord
from yield_dca.dca.journal import StateJournal
from yield_dca.testing import FixedRateConverter, ManualClock, SimulatedToken, SimulatedVault


@pytest.fixture()
def journal() -> StateJournal:
    return StateJournal()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(datetime.datetime(2024, 1, 1))


@pytest.fixture()
def usdc(journal) -> SimulatedToken:
    """Vault underlying, 18 decimals to keep the numbers readable."""
    return SimulatedToken("USDC", journal=journal)


@pytest.fixture()
def weth(journal) -> SimulatedToken:
    """Target token."""
    return SimulatedToken("WETH", journal=journal)


@pytest.fixture()
def vault(usdc, journal) -> SimulatedVault:
    return SimulatedVault(usdc, journal=journal)


@pytest.fixture()
def converter(usdc, weth, journal) -> FixedRateConverter:
    """Buys 3 WETH for 1 USDC."""
    return FixedRateConverter(usdc, weth, rate=Decimal(3), journal=journal)


@pytest.fixture()
def admin() -> HexAddress:
    return Account.create().address


@pytest.fixture()
def keeper() -> HexAddress:
    return Account.create().address


@pytest.fixture()
def alice() -> HexAddress:
    return Account.create().address


@pytest.fixture()
def bob() -> HexAddress:
    return Account.create().address


@pytest.fixture()
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture()
def engine(vault, weth, converter, admin, keeper, config, clock, journal) -> YieldDCAEngine:
    return YieldDCAEngine(
        address=Account.create().address,
        value_source=vault,
        target_token=weth,
        converter=converter,
        admin=admin,
        keeper=keeper,
        config=config,
        clock=clock,
        journal=journal,
    )


@pytest.fixture()
def mint_shares(usdc, vault) -> Callable[[HexAddress, int], int]:
    """Give an account fresh vault shares bought with newly minted underlying."""

    def _mint(account: HexAddress, assets: int) -> int:
        usdc.mint(account, assets)
        return vault.deposit(assets, account, account)

    return _mint


@pytest.fixture()
def run_epoch(engine, clock, keeper) -> Callable[..., EpochRecord]:
    """Wait out the epoch interval and execute."""

    def _run(min_tokens_out: int = 0) -> EpochRecord:
        clock.advance(engine.epoch_interval)
        return engine.execute_dca(keeper, min_tokens_out=min_tokens_out)

    return _run
