"""Simulate a yield DCA engine over many epochs with in-memory collaborators.

- Several depositors enter in different epochs
- The vault grows every epoch, with an occasional loss
- Everyone withdraws at the end and we check nothing was left behind

Usage:

.. code-block:: shell

    DEPOSITORS=5 EPOCHS=52 YIELD_PER_EPOCH=0.004 LOSS_EVERY=10 LOSS=0.02 \
        poetry run python scripts/simulate-yield-dca.py

    # Export all engine events
    EVENTS_CSV=/tmp/events.csv poetry run python scripts/simulate-yield-dca.py

Engine parameters are read from ``YIELD_DCA_*`` environment variables,
see :py:func:`yield_dca.config.create_engine_config_from_env`.
"""

import logging
import os
from decimal import Decimal

from eth_account import Account
from tabulate import tabulate

from yield_dca.config import create_engine_config_from_env
from yield_dca.dca.journal import StateJournal
from yield_dca.errors import NoYield
from yield_dca.events import events_to_dataframe
from yield_dca.factory import YieldDCAFactory
from yield_dca.testing import FixedRateConverter, ManualClock, SimulatedToken, SimulatedVault
from yield_dca.utils import setup_console_logging


logger = logging.getLogger(__name__)


def main():
    setup_console_logging(default_log_level="warning")

    depositor_count = int(os.environ.get("DEPOSITORS", "3"))
    epochs = int(os.environ.get("EPOCHS", "26"))
    yield_per_epoch = Decimal(os.environ.get("YIELD_PER_EPOCH", "0.005"))
    loss_every = int(os.environ.get("LOSS_EVERY", "0"))
    loss = Decimal(os.environ.get("LOSS", "0.01"))
    # WETH per USDC
    rate = Decimal(os.environ.get("CONVERSION_RATE", "0.0003"))
    events_csv = os.environ.get("EVENTS_CSV")

    config = create_engine_config_from_env()
    clock = ManualClock()
    journal = StateJournal()

    usdc = SimulatedToken("USDC", journal=journal, decimals=6)
    weth = SimulatedToken("WETH", journal=journal)
    vault = SimulatedVault(usdc, journal=journal)
    raw_rate = rate * Decimal(10 ** (weth.decimals - usdc.decimals))
    converter = FixedRateConverter(usdc, weth, rate=raw_rate, journal=journal)

    admin = Account.create().address
    keeper = Account.create().address
    factory = YieldDCAFactory(Account.create().address)
    engine = factory.create(vault, weth, converter, admin=admin, keeper=keeper, config=config, clock=clock, journal=journal)

    depositors = [Account.create().address for _ in range(depositor_count)]
    for idx, depositor in enumerate(depositors):
        usdc.mint(depositor, usdc.convert_to_raw(1_000 * (idx + 1)))

    print(f"Engine {engine.address} for vault {vault.address}, {depositor_count} depositors, {epochs} epochs")

    rows = []
    for epoch in range(1, epochs + 1):
        # Stagger entries over the first epochs
        if epoch <= depositor_count:
            depositor = depositors[epoch - 1]
            engine.deposit_assets(depositor, depositor, usdc.balance_of(depositor))

        if loss_every and epoch % loss_every == 0:
            vault.realise_loss(loss)
        else:
            vault.accrue_yield(yield_per_epoch)

        clock.advance(engine.epoch_interval)

        check = engine.can_execute_dca()
        if not check.can_execute:
            assert issubclass(check.error, NoYield), f"Unexpected: {check.reason}"
            rows.append([epoch, f"{vault.get_share_price():.6f}", "-", "-", "-", check.error.__name__])
            continue

        record = engine.execute_dca(keeper, min_tokens_out=0)
        rows.append(
            [
                record.epoch,
                f"{record.share_price:.6f}",
                f"{usdc.convert_to_decimals(record.total_principal):,.2f}",
                f"{usdc.convert_to_decimals(record.yield_converted):,.4f}",
                f"{weth.convert_to_decimals(record.target_tokens_bought):.8f}",
                "",
            ]
        )

    print(tabulate(rows, headers=["Epoch", "Share price", "Principal", "Yield USDC", "Bought WETH", "Skipped"], tablefmt="fancy_grid"))

    payouts = []
    for depositor in depositors:
        if engine.get_position(depositor) is None:
            continue
        # Catch up in chunks if the position is far behind
        while engine.get_position(depositor).checkpoint_epoch < engine.current_epoch:
            engine.settle(depositor, depositor)
        position = engine.get_position(depositor)
        tokens = engine.withdraw(depositor, depositor, position.principal_shares)
        assets = vault.redeem(vault.balance_of(depositor), depositor, depositor)
        payouts.append([depositor, f"{usdc.convert_to_decimals(assets):,.2f}", f"{weth.convert_to_decimals(tokens):.8f}"])

    print(tabulate(payouts, headers=["Depositor", "USDC back", "WETH received"], tablefmt="fancy_grid"))

    bought = engine.epoch_store.get_total_tokens_bought()
    print(f"Total bought {weth.convert_to_decimals(bought)} WETH, left in engine {engine.target_token_balance()} raw, pending pool {engine.pending_allocation} raw")
    print(f"Vault shares left in the engine with no owner: {engine.get_unattributed_shares()} raw")
    assert engine.target_token_balance() == 0
    assert engine.pending_allocation == 0

    if events_csv:
        df = events_to_dataframe(engine.events)
        df.to_csv(events_csv, index=False)
        print(f"Wrote {len(df)} events to {events_csv}")


if __name__ == "__main__":
    main()
