"""Yield DCA engine exceptions.

Every rejected call raises a subclass of :py:class:`YieldDCAError`,
so a keeper can tell "too early" from "no yield" from "swap slippage".

- Configuration: zero addresses, out of bound parameters
- Precondition: interval not elapsed, no principal, no yield
- Slippage: converter returned less than the caller minimum
- Authorization: missing role, acting on somebody else's position
- Insufficient balance: withdraw more than deposited, unknown depositor

All failures are atomic: the engine rolls back any state it touched during the call.
"""


class YieldDCAError(Exception):
    """Base class for all engine failures."""


class ConfigurationError(YieldDCAError):
    """Engine or factory was set up with bad parameters."""


class ZeroAddress(ConfigurationError):
    """A collaborator or account address was the zero address."""


class IntervalOutOfBounds(ConfigurationError):
    """Epoch interval outside the configured ``[min, max]`` range."""


class InvalidParameter(ConfigurationError):
    """Some other configuration value is out of its allowed range."""


class VaultAlreadyDeployed(ConfigurationError):
    """Factory already has an engine for this vault."""


class PreconditionError(YieldDCAError):
    """Call is valid in principle, but not in the current state."""


class IntervalNotElapsed(PreconditionError):
    """Tried to execute before the epoch interval has passed."""


class NoPrincipal(PreconditionError):
    """Nothing has been deposited, so there is no yield to convert."""


class NoYield(PreconditionError):
    """Vault value of the held shares does not exceed the total principal.

    Covers both flat share price and aggregate loss.
    """


class YieldBelowMinimum(NoYield):
    """There is yield, but less than the configured minimum per epoch."""


class ZeroAmount(PreconditionError):
    """Deposit of zero shares or assets."""


class SettlementBacklog(PreconditionError):
    """Position has not been touched for more epochs than we replay in one call.

    Call :py:meth:`yield_dca.dca.engine.YieldDCAEngine.settle` with ``max_epochs``
    to catch up in chunks first.
    """

    def __init__(self, message: str, owner: str, epochs_behind: int):
        super().__init__(message)
        self.owner = owner
        self.epochs_behind = epochs_behind


class SlippageError(YieldDCAError):
    """Swap output did not satisfy the minimum."""


class AmountTooLow(SlippageError):
    """Converter returned less target tokens than ``min_tokens_out``."""

    def __init__(self, message: str, amount_out: int, min_amount_out: int):
        super().__init__(message)
        self.amount_out = amount_out
        self.min_amount_out = min_amount_out


class AuthorizationError(YieldDCAError):
    """Caller is not allowed to do this."""


class MissingRole(AuthorizationError):
    """Caller does not hold the role the call requires."""

    def __init__(self, message: str, role: bytes, account: str):
        super().__init__(message)
        self.role = role
        self.account = account


class NotPositionOwner(AuthorizationError):
    """Tried to act on a position owned by another account."""


class InsufficientBalance(YieldDCAError):
    """Not enough principal or no position at all."""


class InsufficientShares(InsufficientBalance):
    """Withdraw asks for more shares than the position holds."""


class NoDepositFound(InsufficientBalance):
    """Account has no position in this engine."""


class ReentrancyError(YieldDCAError):
    """A collaborator called back into the engine while a call was in progress."""
