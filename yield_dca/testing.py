"""In-memory collaborators for tests and simulations.

Stand-ins for the contracts the engine talks to, with no chain needed:

- :py:class:`SimulatedToken` ERC-20 balances
- :py:class:`SimulatedVault` ERC-4626 share accounting over a :py:class:`SimulatedToken`
- :py:class:`FixedRateConverter` swap at a fixed price
- :py:class:`ManualClock` time that only moves when told to

Give them the same :py:class:`yield_dca.dca.journal.StateJournal` as the engine
and a failed engine call rolls back their balances too, like a reverted transaction
rolls back every contract it touched.

Example:

.. code-block:: python

    journal = StateJournal()
    usdc = SimulatedToken("USDC", journal=journal)
    weth = SimulatedToken("WETH", journal=journal)
    vault = SimulatedVault(usdc, journal=journal)
    converter = FixedRateConverter(usdc, weth, rate=Decimal(3), journal=journal)
    clock = ManualClock()
"""

import datetime
import logging
from decimal import Decimal

from eth_account import Account
from eth_typing import HexAddress
from hexbytes import HexBytes

from yield_dca.dca.journal import StateJournal
from yield_dca.errors import AmountTooLow
from yield_dca.lower_case_dict import LowercaseDict
from yield_dca.utils import checksum_address, native_datetime_utc_now


logger = logging.getLogger(__name__)


class SimulatedRevert(Exception):
    """A simulated contract call failed, e.g. transfer exceeds balance."""


def create_random_address() -> HexAddress:
    return checksum_address(Account.create().address)


class SimulatedToken:
    """ERC-20 balances in a dict."""

    def __init__(self, symbol: str, journal: StateJournal | None = None, address: HexAddress | str | None = None, decimals: int = 18):
        self.symbol = symbol
        self.decimals = decimals
        self.journal = journal or StateJournal()
        self.address = checksum_address(address) if address else create_random_address()
        self.balances: LowercaseDict = LowercaseDict()
        self.total_supply = 0

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.symbol} {self.address}>"

    def balance_of(self, account: HexAddress) -> int:
        return self.balances.get(account, 0)

    def _set_balance(self, account: HexAddress, amount: int):
        assert amount >= 0
        self.journal.remember(self.balances, account)
        self.balances[account] = amount

    def _set_total_supply(self, amount: int):
        old = self.total_supply
        self.journal.on_rollback(lambda: setattr(self, "total_supply", old))
        self.total_supply = amount

    def transfer(self, sender: HexAddress, recipient: HexAddress, amount: int) -> None:
        assert type(amount) == int, f"Got {type(amount)}"
        assert amount >= 0, f"Negative transfer {amount}"
        balance = self.balance_of(sender)
        if balance < amount:
            raise SimulatedRevert(f"{self.symbol}: transfer amount {amount} exceeds balance {balance} of {sender}")
        self._set_balance(sender, balance - amount)
        self._set_balance(recipient, self.balance_of(recipient) + amount)

    def mint(self, account: HexAddress, amount: int):
        assert amount >= 0
        self._set_balance(account, self.balance_of(account) + amount)
        self._set_total_supply(self.total_supply + amount)

    def burn(self, account: HexAddress, amount: int):
        balance = self.balance_of(account)
        if balance < amount:
            raise SimulatedRevert(f"{self.symbol}: burn amount {amount} exceeds balance {balance} of {account}")
        self._set_balance(account, balance - amount)
        self._set_total_supply(self.total_supply - amount)

    def convert_to_decimals(self, raw_amount: int) -> Decimal:
        return Decimal(raw_amount) / Decimal(10**self.decimals)

    def convert_to_raw(self, amount: Decimal | int) -> int:
        return int(Decimal(amount) * Decimal(10**self.decimals))


class SimulatedVault(SimulatedToken):
    """ERC-4626 vault, the share token itself.

    - Share price is ``total_assets / total_supply``. While the vault is empty one raw asset unit
      buys ``10**decimals_offset`` raw shares, like OpenZeppelin ``_decimalsOffset()``
    - Conversions round down, like OpenZeppelin ``ERC4626``
    - Yield and losses are produced by minting or burning underlying held by the vault
    """

    def __init__(self, asset: SimulatedToken, journal: StateJournal | None = None, address: HexAddress | str | None = None, decimals_offset: int = 0):
        """
        :param decimals_offset:
            Extra share decimals over the asset, e.g. 12 for 18 decimal shares over USDC
        """
        assert decimals_offset >= 0
        super().__init__(f"yv{asset.symbol}", journal=journal or asset.journal, address=address, decimals=asset.decimals + decimals_offset)
        self.asset = asset
        self.decimals_offset = decimals_offset

    @property
    def total_assets(self) -> int:
        return self.asset.balance_of(self.address)

    def convert_to_assets(self, shares: int) -> int:
        if self.total_supply == 0:
            return shares // 10**self.decimals_offset
        return shares * self.total_assets // self.total_supply

    def convert_to_shares(self, assets: int) -> int:
        if self.total_supply == 0 or self.total_assets == 0:
            return assets * 10**self.decimals_offset
        return assets * self.total_supply // self.total_assets

    def get_share_price(self) -> Decimal:
        """Raw assets per raw share."""
        if self.total_supply == 0:
            return Decimal(1) / Decimal(10**self.decimals_offset)
        return Decimal(self.total_assets) / Decimal(self.total_supply)

    def deposit(self, assets: int, receiver: HexAddress, sender: HexAddress) -> int:
        shares = self.convert_to_shares(assets)
        self.asset.transfer(sender, self.address, assets)
        self.mint(receiver, shares)
        return shares

    def redeem(self, shares: int, receiver: HexAddress, owner: HexAddress) -> int:
        assets = self.convert_to_assets(shares)
        self.burn(owner, shares)
        self.asset.transfer(self.address, receiver, assets)
        return assets

    def accrue_yield(self, fraction: Decimal) -> int:
        """Grow the share price, e.g. ``Decimal("0.05")`` for +5%.

        :return: Raw underlying minted into the vault
        """
        assert fraction >= 0
        amount = int(Decimal(self.total_assets) * fraction)
        self.asset.mint(self.address, amount)
        logger.debug("Vault %s accrued %d, share price now %s", self.symbol, amount, self.get_share_price())
        return amount

    def realise_loss(self, fraction: Decimal) -> int:
        """Shrink the share price, e.g. ``Decimal("0.2")`` for -20%.

        :return: Raw underlying burnt from the vault
        """
        assert 0 <= fraction <= 1
        amount = int(Decimal(self.total_assets) * fraction)
        self.asset.burn(self.address, amount)
        logger.debug("Vault %s lost %d, share price now %s", self.symbol, amount, self.get_share_price())
        return amount


class FixedRateConverter:
    """Swap ``token_in`` to ``token_out`` at a fixed rate.

    Sold tokens are kept by the converter, bought tokens are minted.
    """

    def __init__(self, token_in: SimulatedToken, token_out: SimulatedToken, rate: Decimal, journal: StateJournal | None = None, address: HexAddress | str | None = None):
        """
        :param rate:
            Raw ``token_out`` units per raw ``token_in`` unit
        """
        assert isinstance(rate, Decimal), f"Got {type(rate)}"
        self.token_in = token_in
        self.token_out = token_out
        self.rate = rate
        self.journal = journal or token_in.journal
        self.address = checksum_address(address) if address else create_random_address()

        #: Routing payload of the last swap, for inspection
        self.last_routing_data: HexBytes | None = None

    def __repr__(self):
        return f"<FixedRateConverter {self.token_in.symbol}->{self.token_out.symbol} at {self.rate}>"

    def swap(
        self,
        token_in: HexAddress,
        token_out: HexAddress,
        amount_in: int,
        min_amount_out: int,
        routing_data: HexBytes,
        sender: HexAddress,
    ) -> int:
        assert token_in == self.token_in.address, f"Cannot sell {token_in}"
        assert token_out == self.token_out.address, f"Cannot buy {token_out}"
        amount_out = int(Decimal(amount_in) * self.rate)
        if amount_out < min_amount_out:
            raise AmountTooLow(f"Swap of {amount_in} gives {amount_out}, minimum was {min_amount_out}", amount_out=amount_out, min_amount_out=min_amount_out)
        self.token_in.transfer(sender, self.address, amount_in)
        self.token_out.mint(sender, amount_out)
        self.last_routing_data = routing_data
        return amount_out


class ManualClock:
    """Clock for :py:class:`yield_dca.dca.engine.YieldDCAEngine` that tests move forward by hand."""

    def __init__(self, start: datetime.datetime | None = None):
        self.now = start or native_datetime_utc_now().replace(microsecond=0)
        assert self.now.tzinfo is None, "Timestamp only accept naive UTC datetimes"

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, delta: datetime.timedelta) -> datetime.datetime:
        assert delta >= datetime.timedelta(0), f"Clock cannot go back: {delta}"
        self.now += delta
        return self.now
