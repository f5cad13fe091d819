"""Position ledger.

One :py:class:`Position` per depositor, stored in the engine.

- Principal is held as vault shares, with the asset amount it was worth at deposit
- Checkpoint tells up to which epoch the position has been settled
- Settled target token balance waits for the next withdraw
"""

import copy
import logging
from dataclasses import dataclass
from typing import Iterator

from eth_typing import HexAddress

from yield_dca.dca.journal import StateJournal
from yield_dca.errors import NoDepositFound
from yield_dca.lower_case_dict import LowercaseDict


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Position:
    """Principal and settlement state of one depositor."""

    #: Depositor, checksummed
    owner: HexAddress

    #: Vault shares held on behalf of the owner.
    #:
    #: Shrinks when settlement strips out the yield that was converted.
    principal_shares: int

    #: Asset value of the principal at deposit time, raw units.
    #:
    #: Only deposits and withdrawals change this.
    principal_assets: int

    #: First epoch not yet settled for this position
    checkpoint_epoch: int

    #: Target tokens settled but not yet paid out, raw units
    settled_token_balance: int = 0

    def __post_init__(self):
        assert type(self.principal_shares) == int, f"Got {type(self.principal_shares)}"
        assert type(self.principal_assets) == int, f"Got {type(self.principal_assets)}"
        assert self.principal_shares >= 0
        assert self.principal_assets >= 0
        assert self.settled_token_balance >= 0

    def is_active(self) -> bool:
        """Still has principal in the engine."""
        return self.principal_shares > 0

    def is_empty(self) -> bool:
        """Nothing left, the position can be removed."""
        return self.principal_shares == 0 and self.settled_token_balance == 0


class PositionLedger:
    """Storage for positions, keyed by owner address.

    - :py:meth:`load` hands out a copy, :py:meth:`save` writes it back,
      so the undo journal always sees the unmodified value
    """

    def __init__(self, journal: StateJournal):
        self.journal = journal
        self._positions: LowercaseDict = LowercaseDict()

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, owner: HexAddress) -> bool:
        return owner in self._positions

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    def get(self, owner: HexAddress) -> Position | None:
        """Read-only access. Do not mutate the returned object."""
        return self._positions.get(owner)

    def load(self, owner: HexAddress) -> Position:
        """Get a mutable copy of a position.

        :raise NoDepositFound:
            The owner has never deposited, or has fully exited
        """
        position = self._positions.get(owner)
        if position is None:
            raise NoDepositFound(f"No position for {owner}")
        return copy.copy(position)

    def load_or_create(self, owner: HexAddress, current_epoch: int) -> Position:
        """Get a mutable copy, or a fresh empty position checkpointed at the current epoch."""
        if owner in self._positions:
            return self.load(owner)
        logger.debug("Opening a new position for %s at epoch %d", owner, current_epoch)
        return Position(
            owner=owner,
            principal_shares=0,
            principal_assets=0,
            checkpoint_epoch=current_epoch,
        )

    def save(self, position: Position):
        """Store a position, or drop it if nothing is left in it."""
        self.journal.remember(self._positions, position.owner)
        if position.is_empty():
            logger.debug("Closing position of %s", position.owner)
            self._positions.pop(position.owner, None)
        else:
            self._positions[position.owner] = position

    def get_total_principal_assets(self) -> int:
        """Sum over all positions.

        - Walks every position, for invariant checks and reporting only
        """
        return sum(p.principal_assets for p in self._positions.values())

    def get_total_principal_shares(self) -> int:
        """Sum over all positions, see :py:meth:`get_total_principal_assets`."""
        return sum(p.principal_shares for p in self._positions.values())

    def get_total_settled_tokens(self) -> int:
        """Sum over all positions, see :py:meth:`get_total_principal_assets`."""
        return sum(p.settled_token_balance for p in self._positions.values())
