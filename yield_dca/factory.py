"""Deploy one engine per vault.

Example:

.. code-block:: python

    factory = YieldDCAFactory(factory_address)
    engine = factory.create(vault, weth, converter, admin=admin, keeper=keeper)
    assert engine.address == factory.predict_address(vault.address)
    assert factory.get_engine(vault.address) is engine
"""

import datetime
import logging
from typing import Callable

from eth_typing import HexAddress, HexStr
from hexbytes import HexBytes
from web3 import Web3

from yield_dca.config import EngineConfig
from yield_dca.converter import Converter
from yield_dca.dca.engine import YieldDCAEngine
from yield_dca.dca.journal import StateJournal
from yield_dca.errors import VaultAlreadyDeployed
from yield_dca.events import EngineDeployed, EventLog
from yield_dca.lower_case_dict import LowercaseDict
from yield_dca.utils import checksum_address, native_datetime_utc_now
from yield_dca.value_source import TokenLedger, ValueSource


logger = logging.getLogger(__name__)


def compute_engine_address(factory: HexAddress | str, vault: HexAddress | str) -> HexAddress:
    """Engine address for a vault.

    Last 20 bytes of ``keccak256(factory ++ vault)``, the same way CREATE2 salts
    derive a contract address from its deployer.
    """
    data = HexBytes(factory) + HexBytes(vault)
    digest = Web3.keccak(data)
    return HexAddress(HexStr(Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())))


class YieldDCAFactory:
    """Registry of engines, at most one per vault."""

    def __init__(self, address: HexAddress | str):
        self.address = checksum_address(address)
        self.events = EventLog()

        #: Engine address -> engine, in deployment order
        self._engines: LowercaseDict = LowercaseDict()

        #: Vault address -> engine address
        self._by_vault: LowercaseDict = LowercaseDict()

    def __repr__(self):
        return f"<YieldDCAFactory {self.address} engines:{self.deployed_count}>"

    @property
    def deployed_addresses(self) -> list[HexAddress]:
        return [e.address for e in self._engines.values()]

    @property
    def deployed_count(self) -> int:
        return len(self._engines)

    @property
    def last_deployed_address(self) -> HexAddress | None:
        addresses = self.deployed_addresses
        return addresses[-1] if addresses else None

    def predict_address(self, vault: HexAddress | str) -> HexAddress:
        """Where :py:meth:`create` deploys the engine of a vault.

        :raise ZeroAddress:
        """
        return compute_engine_address(self.address, checksum_address(vault))

    def is_deployed(self, vault: HexAddress | str) -> bool:
        return vault in self._by_vault

    def associated_vault(self, engine_address: HexAddress | str) -> HexAddress | None:
        """Vault an engine was deployed for, ``None`` for unknown engines."""
        engine = self._engines.get(engine_address)
        if engine is None:
            return None
        return engine.value_source.address

    def get_engine(self, vault: HexAddress | str) -> YieldDCAEngine | None:
        engine_address = self._by_vault.get(vault)
        if engine_address is None:
            return None
        return self._engines[engine_address]

    def create(
        self,
        value_source: ValueSource,
        target_token: TokenLedger,
        converter: Converter,
        admin: HexAddress | str,
        keeper: HexAddress | str,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime.datetime] = native_datetime_utc_now,
        journal: StateJournal | None = None,
    ) -> YieldDCAEngine:
        """Deploy an engine for a vault.

        See :py:class:`yield_dca.dca.engine.YieldDCAEngine` for the arguments.

        :raise ZeroAddress:
            Vault or any other collaborator has the zero address

        :raise VaultAlreadyDeployed:
            The vault already has an engine
        """
        vault = checksum_address(value_source.address)
        if self.is_deployed(vault):
            raise VaultAlreadyDeployed(f"Vault {vault} already has engine {self._by_vault[vault]}")

        engine = YieldDCAEngine(
            address=self.predict_address(vault),
            value_source=value_source,
            target_token=target_token,
            converter=converter,
            admin=admin,
            keeper=keeper,
            config=config,
            clock=clock,
            journal=journal,
        )

        self._engines[engine.address] = engine
        self._by_vault[vault] = engine.address
        self.events.emit(EngineDeployed(factory=self.address, engine=engine.address, vault=vault))
        logger.info("Factory %s deployed engine %s for vault %s", self.address, engine.address, vault)
        return engine
