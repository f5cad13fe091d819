"""Position settlement.

Replay the epochs a position has not seen yet and work out what it is owed.

For each epoch ``e`` since the checkpoint:

- Value the position shares at the epoch share price, ``value_held / shares_held`` of the record
- If the value does not exceed the principal, the position is underwater (or flat) for ``e``:
  it gets nothing and keeps its shares. Its share of the epoch stays undistributed
  and reaches the pending allocation pool through the epoch tally.
- Otherwise strip the yield shares, so that the remaining shares are worth the principal,
  and credit ``principal * tokens_bought // total_principal`` target tokens

Tokens are allocated by principal, not by each position's own yield.
When aggregate yield is positive while some positions are in loss,
the positions in profit subsidise the others. This is the documented
behaviour of the engine and the pending pool is what eventually evens it out.

Settlement is a pure function of the position and the epoch log. Cost is linear
in the number of epochs since the position was last touched, never in the number of positions.
"""

import logging
from dataclasses import dataclass

from yield_dca.dca.epoch import EpochClaim, EpochStore
from yield_dca.dca.position import Position
from yield_dca.utils import ceil_div


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SettlementResult:
    """Outcome of replaying epochs for one position."""

    #: Shares left after yield was stripped
    principal_shares: int

    #: New checkpoint, first epoch still unsettled
    checkpoint_epoch: int

    #: Target tokens newly credited by this settlement
    accrued_tokens: int

    #: Per epoch bookkeeping for the epoch tallies
    claims: tuple[EpochClaim, ...]

    def is_noop(self) -> bool:
        """Nothing to replay, the position was already up to date."""
        return len(self.claims) == 0

    def get_withheld_epochs(self) -> list[int]:
        """Epochs where the position was underwater."""
        return [c.epoch for c in self.claims if c.withheld]

    def apply(self, position: Position) -> Position:
        """Write the result into a position copy loaded from the ledger."""
        position.principal_shares = self.principal_shares
        position.checkpoint_epoch = self.checkpoint_epoch
        position.settled_token_balance += self.accrued_tokens
        return position


def settle_position(
    position: Position,
    epoch_store: EpochStore,
    current_epoch: int,
    max_epochs: int | None = None,
) -> SettlementResult:
    """Compute the settlement of a position up to the current epoch.

    Example:

    .. code-block:: python

        result = settle_position(position, engine.epoch_store, engine.state.current_epoch)
        print(f"Position would receive {result.accrued_tokens} target tokens")

    :param position:
        Position to settle, not modified

    :param epoch_store:
        Executed epochs

    :param current_epoch:
        Epoch that has not been executed yet

    :param max_epochs:
        Replay at most this many epochs. The checkpoint then lands before ``current_epoch``
        and the rest can be settled in a later call.

    :return:
        New shares, checkpoint, accrued tokens and per epoch claims
    """
    assert isinstance(position, Position), f"Got {type(position)}"
    assert position.checkpoint_epoch <= current_epoch, f"Position {position.owner} checkpoint {position.checkpoint_epoch} is ahead of epoch {current_epoch}"

    stop = current_epoch
    if max_epochs is not None:
        assert max_epochs > 0, f"max_epochs must be positive, got {max_epochs}"
        stop = min(current_epoch, position.checkpoint_epoch + max_epochs)

    shares = position.principal_shares
    principal = position.principal_assets
    accrued = 0
    claims = []

    for record in epoch_store.iterate_range(position.checkpoint_epoch, stop):
        value = shares * record.value_held // record.shares_held

        if principal == 0 or value <= principal:
            logger.debug("Position %s underwater in epoch %d, value %d, principal %d", position.owner, record.epoch, value, principal)
            claims.append(EpochClaim(epoch=record.epoch, principal=principal, tokens=0, withheld=True))
            continue

        shares = ceil_div(principal * record.shares_held, record.value_held)
        tokens = principal * record.target_tokens_bought // record.total_principal
        accrued += tokens
        claims.append(EpochClaim(epoch=record.epoch, principal=principal, tokens=tokens, withheld=False))

    return SettlementResult(
        principal_shares=shares,
        checkpoint_epoch=stop,
        accrued_tokens=accrued,
        claims=tuple(claims),
    )
