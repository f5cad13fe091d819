"""ERC-4626 vault and ERC-20 token interfaces the engine talks to.

- :py:class:`ValueSource` is the vault: share price oracle and custodian of the underlying
- :py:class:`TokenLedger` is a plain ERC-20 token, used for the underlying and the target token

The engine only depends on these protocols. Use :py:mod:`yield_dca.testing` for in-memory
implementations, or :py:class:`Web3ValueSource` / :py:class:`Web3TokenLedger` to run against
deployed contracts through `web3.py`, e.g. on an Anvil fork.
"""

import logging
from typing import Protocol

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from yield_dca.utils import checksum_address


logger = logging.getLogger(__name__)


class TokenLedger(Protocol):
    """ERC-20 balances and transfers."""

    #: Token contract address
    address: HexAddress

    def balance_of(self, account: HexAddress) -> int:
        """Raw balance of an account."""

    def transfer(self, sender: HexAddress, recipient: HexAddress, amount: int) -> None:
        """Move raw units from sender to recipient, raise if sender does not have them."""


class ValueSource(TokenLedger, Protocol):
    """ERC-4626 vault.

    Share balances and transfers come from :py:class:`TokenLedger`,
    as the vault is the share token itself.
    """

    #: Underlying asset of the vault
    asset: TokenLedger

    def convert_to_assets(self, shares: int) -> int:
        """How many assets the shares are worth, rounded down."""

    def convert_to_shares(self, assets: int) -> int:
        """How many shares the assets are worth, rounded down."""

    def deposit(self, assets: int, receiver: HexAddress, sender: HexAddress) -> int:
        """Pull assets from sender, mint shares to receiver.

        :return: Shares minted
        """

    def redeem(self, shares: int, receiver: HexAddress, owner: HexAddress) -> int:
        """Burn shares of owner, send the assets to receiver.

        :return: Assets sent
        """


#: Subset of IERC4626 and IERC20 we call
ERC4626_ABI = [
    {"type": "function", "name": "asset", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "address"}]},
    {"type": "function", "name": "convertToAssets", "stateMutability": "view", "inputs": [{"name": "shares", "type": "uint256"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "convertToShares", "stateMutability": "view", "inputs": [{"name": "assets", "type": "uint256"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "deposit", "stateMutability": "nonpayable", "inputs": [{"name": "assets", "type": "uint256"}, {"name": "receiver", "type": "address"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "redeem", "stateMutability": "nonpayable", "inputs": [{"name": "shares", "type": "uint256"}, {"name": "receiver", "type": "address"}, {"name": "owner", "type": "address"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "balanceOf", "stateMutability": "view", "inputs": [{"name": "account", "type": "address"}], "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "transfer", "stateMutability": "nonpayable", "inputs": [{"name": "to", "type": "address"}, {"name": "value", "type": "uint256"}], "outputs": [{"name": "", "type": "bool"}]},
]

#: Subset of IERC20 we call
ERC20_ABI = [entry for entry in ERC4626_ABI if entry["name"] in ("balanceOf", "transfer")]


def get_deployed_erc_4626_contract(web3: Web3, address: HexAddress | str) -> Contract:
    """Get IERC4626 deployed at some address."""
    return web3.eth.contract(address=checksum_address(address), abi=ERC4626_ABI)


def get_deployed_erc_20_contract(web3: Web3, address: HexAddress | str) -> Contract:
    """Get the IERC20 calls we need for a token deployed at some address."""
    return web3.eth.contract(address=checksum_address(address), abi=ERC20_ABI)


def transact_and_check(web3: Web3, bound_func: ContractFunction, sender: HexAddress):
    """Dry run a contract call to get its return value, then broadcast it.

    - Sender must be an unlocked account of the node, like on Anvil

    :return:
        Return value of the dry run

    :raise RuntimeError:
        If the transaction reverted
    """
    result = bound_func.call({"from": sender})
    tx_hash = bound_func.transact({"from": sender})
    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise RuntimeError(f"Transaction {tx_hash.hex()} reverted: {bound_func.fn_name}() from {sender}")
    return result


class Web3TokenLedger:
    """ERC-20 token deployed on a chain."""

    def __init__(self, web3: Web3, address: HexAddress | str):
        self.web3 = web3
        self.contract = get_deployed_erc_20_contract(web3, address)
        self.address = self.contract.address

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.address}>"

    def balance_of(self, account: HexAddress) -> int:
        return self.contract.functions.balanceOf(account).call()

    def transfer(self, sender: HexAddress, recipient: HexAddress, amount: int) -> None:
        transact_and_check(self.web3, self.contract.functions.transfer(recipient, amount), sender)


class Web3ValueSource(Web3TokenLedger):
    """ERC-4626 vault deployed on a chain.

    Example:

    .. code-block:: python

        vault = Web3ValueSource(web3, "0x0d877Dc7C8Fa3aD980DfDb18B48eC9F8768359C4")
        one_share = 10**18
        print(f"Share price is {vault.convert_to_assets(one_share)}")
    """

    def __init__(self, web3: Web3, address: HexAddress | str):
        self.web3 = web3
        self.contract = get_deployed_erc_4626_contract(web3, address)
        self.address = self.contract.address
        asset_address = self.contract.functions.asset().call()
        self.asset = Web3TokenLedger(web3, asset_address)

    def convert_to_assets(self, shares: int) -> int:
        return self.contract.functions.convertToAssets(shares).call()

    def convert_to_shares(self, assets: int) -> int:
        return self.contract.functions.convertToShares(assets).call()

    def deposit(self, assets: int, receiver: HexAddress, sender: HexAddress) -> int:
        logger.info("Depositing %d assets to vault %s for %s", assets, self.address, receiver)
        return transact_and_check(self.web3, self.contract.functions.deposit(assets, receiver), sender)

    def redeem(self, shares: int, receiver: HexAddress, owner: HexAddress) -> int:
        logger.info("Redeeming %d shares from vault %s, owner %s", shares, self.address, owner)
        return transact_and_check(self.web3, self.contract.functions.redeem(shares, receiver, owner), owner)
