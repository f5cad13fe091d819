"""Yield DCA engine.

Ties the position ledger, epoch store, settlement and executor together
behind the public calls depositors, keepers and admins make.

Example:

.. code-block:: python

    engine = YieldDCAEngine(
        address=engine_address,
        value_source=vault,
        target_token=weth,
        converter=converter,
        admin=admin,
        keeper=keeper,
    )

    engine.deposit(alice, alice, 10**18)

    # Two weeks later
    if engine.can_execute_dca().can_execute:
        engine.execute_dca(keeper, min_tokens_out=0)

    # Claim the target tokens, keep the principal in
    engine.withdraw(alice, alice, 0)

Every mutating call:

- Takes a non-reentrant lock, a collaborator calling back in gets :py:class:`yield_dca.errors.ReentrancyError`
- Runs inside a :py:class:`yield_dca.dca.journal.StateJournal` transaction, so an exception leaves no partial state behind
- Settles the position before touching its principal
- Position calls take the calling account first and refuse to act on a position of someone else
"""

import dataclasses
import datetime
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Iterator

from eth_typing import HexAddress
from hexbytes import HexBytes

from yield_dca.access import AccessControl
from yield_dca.config import EngineConfig, validate_min_yield_per_epoch
from yield_dca.constants import ADMIN_ROLE, FIRST_EPOCH, KEEPER_ROLE
from yield_dca.converter import Converter
from yield_dca.dca.epoch import EpochRecord, EpochStore
from yield_dca.dca.executor import ExecutionCheck, check_preconditions, execute_epoch
from yield_dca.dca.journal import StateJournal
from yield_dca.dca.position import Position, PositionLedger
from yield_dca.dca.settlement import SettlementResult, settle_position
from yield_dca.dca.state import GlobalState
from yield_dca.errors import (
    InsufficientShares,
    NotPositionOwner,
    PreconditionError,
    ReentrancyError,
    SettlementBacklog,
    ZeroAmount,
)
from yield_dca.events import (
    ConverterUpdated,
    DCAExecuted,
    Deposited,
    EpochIntervalUpdated,
    EventLog,
    MinYieldPerEpochUpdated,
    PendingAllocationDistributed,
    Withdrawn,
)
from yield_dca.utils import checksum_address, native_datetime_utc_now
from yield_dca.value_source import TokenLedger, ValueSource


logger = logging.getLogger(__name__)


class YieldDCAEngine:
    """Convert the yield of deposited vault shares to a target token, epoch by epoch.

    One engine serves one vault and one target token.
    See :py:class:`yield_dca.factory.YieldDCAFactory` for deploying engines.
    """

    def __init__(
        self,
        address: HexAddress | str,
        value_source: ValueSource,
        target_token: TokenLedger,
        converter: Converter,
        admin: HexAddress | str,
        keeper: HexAddress | str,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime.datetime] = native_datetime_utc_now,
        journal: StateJournal | None = None,
    ):
        """
        :param address:
            Account holding the vault shares and target tokens of this engine

        :param value_source:
            ERC-4626 vault whose shares are deposited

        :param target_token:
            Token the yield is converted to

        :param converter:
            Swapper for ``value_source.asset -> target_token``

        :param admin:
            Initial ``ADMIN_ROLE`` holder

        :param keeper:
            Initial ``KEEPER_ROLE`` holder

        :param config:
            Engine parameters, defaults used if not given

        :param clock:
            Returns the current time as naive UTC

        :param journal:
            Undo journal. Pass the same journal to in-memory collaborators
            so that their state is rolled back together with the engine's.

        :raise ZeroAddress:
            If any of the addresses is the zero address
        """
        self.address = checksum_address(address)
        checksum_address(value_source.address)
        checksum_address(target_token.address)
        checksum_address(converter.address)
        admin = checksum_address(admin)
        keeper = checksum_address(keeper)

        self.value_source = value_source
        self.target_token = target_token
        self.converter = converter
        self.config = dataclasses.replace(config) if config is not None else EngineConfig()
        self.clock = clock

        self.journal = journal or StateJournal()
        self.events = EventLog(self.journal)
        self.positions = PositionLedger(self.journal)
        self.epoch_store = EpochStore(self.journal)
        self.access = AccessControl(self.journal, self.events.emit)

        self.state = GlobalState(
            current_epoch=FIRST_EPOCH,
            epoch_start_time=self._now(),
            epoch_interval=self.config.epoch_interval,
        )

        self._locked = False

        self.access.setup_role(ADMIN_ROLE, admin)
        self.access.setup_role(KEEPER_ROLE, keeper)

        logger.info("Engine %s created for vault %s, target token %s, epoch interval %s", self.address, value_source.address, target_token.address, self.state.epoch_interval)

    def __repr__(self):
        return f"<YieldDCAEngine {self.address} vault:{self.value_source.address} epoch:{self.state.current_epoch} principal:{self.state.total_principal}>"

    def _now(self) -> datetime.datetime:
        now = self.clock()
        assert now.tzinfo is None, f"Clock must return naive UTC datetimes, got {now}"
        return now

    @contextmanager
    def _transaction(self) -> Iterator[StateJournal]:
        """Lock the engine and make the call revert as a whole on error."""
        if self._locked:
            raise ReentrancyError(f"Engine {self.address} re-entered while a call was in progress")

        self._locked = True
        try:
            with self.journal.transaction() as journal:
                snapshot = dataclasses.replace(self.state)
                journal.on_rollback(lambda: setattr(self, "state", snapshot))
                yield journal
        finally:
            self._locked = False

    #
    # Views
    #

    @property
    def current_epoch(self) -> int:
        return self.state.current_epoch

    @property
    def total_principal(self) -> int:
        return self.state.total_principal

    @property
    def pending_allocation(self) -> int:
        return self.state.pending_allocation

    @property
    def epoch_interval(self) -> datetime.timedelta:
        return self.state.epoch_interval

    def get_position(self, owner: HexAddress | str) -> Position | None:
        """Stored position, as of the last time it was touched."""
        position = self.positions.get(owner)
        return dataclasses.replace(position) if position else None

    def preview_position(self, owner: HexAddress | str) -> Position | None:
        """What the position would look like if settled now.

        - Pending allocation slices are not included, as they depend on other positions settling first
        """
        position = self.get_position(owner)
        if position is None:
            return None
        result = settle_position(position, self.epoch_store, self.state.current_epoch)
        return result.apply(position)

    def total_shares_held(self) -> int:
        """Vault shares in the custody of the engine."""
        return self.value_source.balance_of(self.address)

    def target_token_balance(self) -> int:
        """Target tokens in the custody of the engine, settled or not."""
        return self.target_token.balance_of(self.address)

    def get_unattributed_shares(self) -> int:
        """Vault shares in engine custody that no position will settle to.

        Positions withheld in an epoch keep their shares while others are stripped,
        which can leave shares behind that belong to nobody.

        - While there is principal, their value counts as yield and they are converted by the next :py:meth:`execute_dca`
        - After the last exit they stay here, this view is how to find them

        Walks all positions, for off-chain reporting only.

        :return:
            Engine share balance minus what all positions settle to.
            Can be a few shares negative due to rounding, see ``share_dust_tolerance``.
        """
        owed = 0
        for position in self.positions:
            owed += self.preview_position(position.owner).principal_shares
        return self.total_shares_held() - owed

    def has_role(self, role: bytes, account: HexAddress | str) -> bool:
        return self.access.has_role(role, account)

    def can_execute_dca(self) -> ExecutionCheck:
        """Dry run :py:meth:`execute_dca` preconditions.

        Does not check the caller role or the swap outcome.
        """
        try:
            quote = check_preconditions(self.state, self.config, self.value_source, self.address, self._now())
        except PreconditionError as e:
            return ExecutionCheck(can_execute=False, reason=str(e), error=type(e))
        return ExecutionCheck(can_execute=True, quote=quote)

    #
    # Settlement helpers
    #

    def _settle(self, position: Position, max_epochs: int | None = None) -> SettlementResult:
        """Replay epochs for a loaded position and book the claims."""
        result = settle_position(position, self.epoch_store, self.state.current_epoch, max_epochs)
        if result.is_noop():
            return result

        released = self.epoch_store.apply_claims(result.claims)
        if released:
            self.state.pending_allocation += released
            logger.info("Released %d undistributed target tokens to the pending pool, pool is now %d", released, self.state.pending_allocation)

        result.apply(position)

        withheld = result.get_withheld_epochs()
        if withheld:
            logger.info("Position %s was underwater in epochs %s, nothing accrued for them", position.owner, withheld)

        logger.debug("Settled %s up to epoch %d, accrued %d target tokens", position.owner, result.checkpoint_epoch, result.accrued_tokens)
        return result

    def _settle_fully(self, position: Position) -> SettlementResult:
        """Settle before a principal change.

        :raise SettlementBacklog:
            Position is too far behind to replay in one call
        """
        behind = self.state.current_epoch - position.checkpoint_epoch
        limit = self.config.max_settlement_epochs
        if limit is not None and behind > limit:
            raise SettlementBacklog(
                f"Position {position.owner} is {behind} epochs behind, we replay at most {limit} per call. Use settle() with max_epochs first.",
                owner=position.owner,
                epochs_behind=behind,
            )
        return self._settle(position)

    def _distribute_pending(self, position: Position) -> int:
        """Give a caught-up position its principal share of the pending pool.

        Must be called before the principal of the position changes.

        :return:
            Target tokens credited
        """
        pending = self.state.pending_allocation
        if pending == 0 or position.principal_assets == 0:
            return 0

        if position.checkpoint_epoch != self.state.current_epoch:
            return 0

        amount = pending * position.principal_assets // self.state.total_principal
        if amount == 0:
            return 0

        position.settled_token_balance += amount
        self.state.pending_allocation -= amount
        self.events.emit(PendingAllocationDistributed(owner=position.owner, amount=amount, remaining=self.state.pending_allocation))
        logger.info("Distributed %d pending target tokens to %s, %d left", amount, position.owner, self.state.pending_allocation)
        return amount

    def _check_owner(self, caller: HexAddress | str, owner: HexAddress | str) -> HexAddress:
        """Only the owner can move or settle their position.

        :return:
            Checksummed owner

        :raise NotPositionOwner:
        """
        caller = checksum_address(caller)
        owner = checksum_address(owner)
        if caller != owner:
            raise NotPositionOwner(f"{caller} cannot act on the position of {owner}")
        return owner

    #
    # Depositors
    #

    def _open(self, owner: HexAddress, shares: int) -> Position:
        """Add shares already in engine custody to the position of owner."""
        position = self.positions.load_or_create(owner, self.state.current_epoch)
        self._settle_fully(position)
        self._distribute_pending(position)

        assets = self.value_source.convert_to_assets(shares)
        if assets == 0:
            raise ZeroAmount(f"{shares} shares are worth nothing at the current share price")

        position.principal_shares += shares
        position.principal_assets += assets
        position.checkpoint_epoch = self.state.current_epoch
        self.state.total_principal += assets
        self.positions.save(position)

        self.events.emit(Deposited(owner=owner, epoch=self.state.current_epoch, shares=shares, principal_assets=assets))
        logger.info("%s deposited %d shares worth %d assets in epoch %d, total principal %d", owner, shares, assets, self.state.current_epoch, self.state.total_principal)
        return position

    def deposit(self, caller: HexAddress | str, owner: HexAddress | str, shares: int) -> Position:
        """Deposit vault shares as principal.

        Settles the existing position first, at its old principal.

        :param caller:
            Account making the call, must be the owner

        :param owner:
            Depositor, shares are pulled from this account

        :param shares:
            Raw vault share amount

        :return:
            Position after the deposit

        :raise ZeroAmount:
            Zero shares, or shares worth zero assets

        :raise NotPositionOwner:
            Caller is not the owner
        """
        assert type(shares) == int, f"Got {type(shares)}"
        owner = self._check_owner(caller, owner)
        if shares <= 0:
            raise ZeroAmount(f"Cannot deposit {shares} shares")

        with self._transaction():
            position = self._open(owner, shares)
            self.value_source.transfer(owner, self.address, shares)
            return dataclasses.replace(position)

    def deposit_assets(self, caller: HexAddress | str, owner: HexAddress | str, assets: int) -> Position:
        """Deposit the underlying into the vault for the owner and open a position with the minted shares.

        :param assets:
            Raw amount of ``value_source.asset``, pulled from the owner

        :return:
            Position after the deposit
        """
        assert type(assets) == int, f"Got {type(assets)}"
        owner = self._check_owner(caller, owner)
        if assets <= 0:
            raise ZeroAmount(f"Cannot deposit {assets} assets")

        with self._transaction():
            shares = self.value_source.deposit(assets, self.address, owner)
            if shares == 0:
                raise ZeroAmount(f"Vault minted no shares for {assets} assets")
            position = self._open(owner, shares)
            return dataclasses.replace(position)

    def withdraw(self, caller: HexAddress | str, owner: HexAddress | str, shares: int) -> int:
        """Withdraw principal and claim all settled target tokens.

        - ``shares == 0`` only claims the target tokens
        - Principal is reduced pro rata to the shares withdrawn
        - Withdrawing all shares closes the position

        :param caller:
            Account making the call, must be the owner

        :param owner:
            Position owner, receives shares and tokens

        :param shares:
            Raw vault shares to take out

        :return:
            Target tokens paid out

        :raise NoDepositFound:
            Owner has no position

        :raise InsufficientShares:
            Asked more shares than the position has

        :raise NotPositionOwner:
            Caller is not the owner
        """
        assert type(shares) == int, f"Got {type(shares)}"
        assert shares >= 0, f"Negative withdraw: {shares}"
        owner = self._check_owner(caller, owner)

        with self._transaction():
            position = self.positions.load(owner)
            self._settle_fully(position)
            self._distribute_pending(position)

            if shares > position.principal_shares:
                raise InsufficientShares(f"{owner} has {position.principal_shares} shares, tried to withdraw {shares}")

            shares_out = shares
            if shares > 0:
                available = self.value_source.balance_of(self.address)
                if shares > available:
                    shortfall = shares - available
                    if shortfall > self.config.share_dust_tolerance:
                        raise InsufficientShares(f"Engine holds {available} shares, {owner} withdraws {shares}")
                    logger.warning("Withdraw of %d shares by %s is %d shares over engine balance, paying out %d", shares, owner, shortfall, available)
                    shares_out = available

            if shares == position.principal_shares:
                principal_out = position.principal_assets
            else:
                principal_out = position.principal_assets * shares // position.principal_shares

            tokens_out = position.settled_token_balance

            position.principal_shares -= shares
            position.principal_assets -= principal_out
            position.settled_token_balance = 0
            self.state.total_principal -= principal_out
            self.positions.save(position)

            self.events.emit(Withdrawn(owner=owner, epoch=self.state.current_epoch, shares=shares_out, principal_assets=principal_out, tokens_paid=tokens_out))
            logger.info("%s withdrew %d shares, %d principal and %d target tokens in epoch %d", owner, shares_out, principal_out, tokens_out, self.state.current_epoch)

            if shares_out:
                self.value_source.transfer(self.address, owner, shares_out)

            if tokens_out:
                self.target_token.transfer(self.address, owner, tokens_out)

            return tokens_out

    def settle(self, caller: HexAddress | str, owner: HexAddress | str, max_epochs: int | None = None) -> SettlementResult:
        """Settle a position without changing its principal.

        Use this to catch up a position that has fallen behind more than
        ``max_settlement_epochs`` epochs, one chunk per call.

        :param max_epochs:
            Epochs to replay in this call. Defaults to ``max_settlement_epochs`` of the config.

        :return:
            What this call settled
        """
        owner = self._check_owner(caller, owner)

        if max_epochs is None:
            max_epochs = self.config.max_settlement_epochs

        with self._transaction():
            position = self.positions.load(owner)
            result = self._settle(position, max_epochs)
            self._distribute_pending(position)
            self.positions.save(position)
            return result

    #
    # Keeper
    #

    def execute_dca(self, caller: HexAddress | str, min_tokens_out: int, routing_data: HexBytes | bytes = b"") -> EpochRecord:
        """Convert the yield of this epoch to the target token.

        :param caller:
            Must hold ``KEEPER_ROLE``

        :param min_tokens_out:
            Fail if the converter returns less target tokens

        :param routing_data:
            Opaque payload for the converter

        :return:
            Record of the executed epoch

        :raise IntervalNotElapsed:
        :raise NoPrincipal:
        :raise NoYield:
        :raise AmountTooLow:
        :raise MissingRole:
        """
        caller = checksum_address(caller)
        with self._transaction():
            self.access.require_role(KEEPER_ROLE, caller)
            record = execute_epoch(
                self.state,
                self.config,
                self.epoch_store,
                self.value_source,
                self.target_token,
                self.converter,
                holder=self.address,
                min_tokens_out=min_tokens_out,
                routing_data=routing_data,
                now=self._now(),
            )
            self.events.emit(DCAExecuted.from_record(record))
            return record

    #
    # Admin
    #

    def set_epoch_interval(self, caller: HexAddress | str, interval: datetime.timedelta):
        """:raise IntervalOutOfBounds:"""
        assert isinstance(interval, datetime.timedelta), f"Got {type(interval)}"
        caller = checksum_address(caller)
        with self._transaction():
            self.access.require_role(ADMIN_ROLE, caller)
            self.config.validate_epoch_interval(interval)
            old = self.state.epoch_interval
            self.state.epoch_interval = interval
            self.events.emit(EpochIntervalUpdated(caller=caller, old_interval=old, new_interval=interval))
            logger.info("Epoch interval changed %s -> %s by %s", old, interval, caller)

    def set_converter(self, caller: HexAddress | str, converter: Converter):
        caller = checksum_address(caller)
        new_address = checksum_address(converter.address)
        with self._transaction() as journal:
            self.access.require_role(ADMIN_ROLE, caller)
            old = self.converter
            self.converter = converter
            journal.on_rollback(lambda: setattr(self, "converter", old))
            self.events.emit(ConverterUpdated(caller=caller, old_converter=old.address, new_converter=new_address))
            logger.info("Converter changed %s -> %s by %s", old.address, new_address, caller)

    def set_min_yield_per_epoch(self, caller: HexAddress | str, value: Decimal):
        """:raise InvalidParameter: If value is outside ``[0, 1%]``"""
        assert isinstance(value, Decimal), f"Got {type(value)}"
        caller = checksum_address(caller)
        with self._transaction() as journal:
            self.access.require_role(ADMIN_ROLE, caller)
            validate_min_yield_per_epoch(value)
            old = self.config.min_yield_per_epoch
            self.config.min_yield_per_epoch = value
            journal.on_rollback(lambda: setattr(self.config, "min_yield_per_epoch", old))
            self.events.emit(MinYieldPerEpochUpdated(caller=caller, old_value=old, new_value=value))
            logger.info("Minimum yield per epoch changed %s -> %s by %s", old, value, caller)

    def grant_role(self, caller: HexAddress | str, role: bytes, account: HexAddress | str):
        caller = checksum_address(caller)
        with self._transaction():
            self.access.grant_role(caller, role, account)

    def revoke_role(self, caller: HexAddress | str, role: bytes, account: HexAddress | str):
        caller = checksum_address(caller)
        with self._transaction():
            self.access.revoke_role(caller, role, account)

    def renounce_role(self, caller: HexAddress | str, role: bytes):
        caller = checksum_address(caller)
        with self._transaction():
            self.access.renounce_role(caller, role)
