"""Yield DCA constants and defaults."""

import datetime
from decimal import Decimal

from web3 import Web3

#: Fixed point scale for share prices, same as Solidity ``1e18``
WAD = 10**18

#: First epoch id of a fresh engine
FIRST_EPOCH = 1

#: Null address
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"

#: Role that can change parameters and manage roles.
#:
#: Same encoding as OpenZeppelin ``AccessControl``
ADMIN_ROLE: bytes = bytes(32)

#: Role that can call ``execute_dca()``
KEEPER_ROLE: bytes = bytes(Web3.keccak(text="KEEPER_ROLE"))

#: Default time between two executions
DEFAULT_EPOCH_INTERVAL = datetime.timedelta(weeks=2)

#: Lower bound for the epoch interval an admin may set
DEFAULT_MIN_EPOCH_INTERVAL = datetime.timedelta(days=1)

#: Upper bound for the epoch interval an admin may set
DEFAULT_MAX_EPOCH_INTERVAL = datetime.timedelta(weeks=10)

#: Minimum yield as a fraction of the principal to bother executing.
#:
#: 0 means any positive yield is converted.
DEFAULT_MIN_YIELD_PER_EPOCH = Decimal(0)

#: Upper limit for the minimum yield an admin may set
MAX_MIN_YIELD_PER_EPOCH = Decimal("0.01")

#: How many epochs deposit/withdraw replay in one call
DEFAULT_MAX_SETTLEMENT_EPOCHS = 1_000

#: How many raw share units a withdrawal may fall short because of ceil rounding
DEFAULT_SHARE_DUST_TOLERANCE = 1_000
