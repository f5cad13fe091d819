"""Epoch store and settlement tallies."""

import datetime
from decimal import Decimal

import pytest

from yield_dca.dca.epoch import EpochClaim, EpochRecord, EpochStore
from yield_dca.dca.journal import StateJournal


def make_record(epoch: int, total_principal=3, bought=10, yield_converted=5, shares_held=10**18, value_held=10**18) -> EpochRecord:
    return EpochRecord(
        epoch=epoch,
        executed_at=datetime.datetime(2024, 1, 1) + datetime.timedelta(weeks=2 * epoch),
        total_principal=total_principal,
        shares_redeemed=yield_converted,
        yield_converted=yield_converted,
        target_tokens_bought=bought,
        shares_held=shares_held,
        value_held=value_held,
    )


def test_epoch_store_append_in_order():
    store = EpochStore(StateJournal())
    assert store.next_epoch == 1
    assert store.get_latest() is None

    store.append(make_record(1))
    store.append(make_record(2))
    assert len(store) == 2
    assert store.get_latest().epoch == 2
    assert [r.epoch for r in store.iterate_range(2, 3)] == [2]

    with pytest.raises(AssertionError):
        store.append(make_record(4))

    with pytest.raises(AssertionError):
        store.get(3)


def test_epoch_record_derived_values():
    record = make_record(1, bought=15, yield_converted=5, shares_held=2 * 10**18, value_held=3 * 10**18)
    assert record.conversion_rate == Decimal(3)
    assert record.share_price == Decimal("1.5")
    assert record.share_price_raw == 1_500_000_000_000_000_000

    # 18 decimal shares over a 6 decimal asset
    record = make_record(1, shares_held=10**18, value_held=1_053_700)
    assert record.share_price == Decimal("0.0000000000010537")
    assert record.share_price_raw == 1_053_700


def test_epoch_record_naive_utc_only():
    with pytest.raises(AssertionError):
        EpochRecord(
            epoch=1,
            executed_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
            total_principal=1,
            shares_redeemed=1,
            yield_converted=1,
            target_tokens_bought=1,
            shares_held=10**18,
            value_held=10**18,
        )


def test_epoch_tally_releases_remainder():
    """Once all principal has settled an epoch, the undistributed remainder is released."""
    store = EpochStore(StateJournal())
    store.append(make_record(1, total_principal=3, bought=10))

    released = store.apply_claims([EpochClaim(epoch=1, principal=1, tokens=3, withheld=False)])
    assert released == 0
    assert store.get_open_epochs() == [1]

    released = store.apply_claims([EpochClaim(epoch=1, principal=2, tokens=6, withheld=False)])
    assert released == 1
    assert store.get_open_epochs() == []
    tally = store.get_tally(1)
    assert tally.closed
    assert tally.tokens_distributed == 9

    with pytest.raises(AssertionError):
        store.apply_claims([EpochClaim(epoch=1, principal=1, tokens=0, withheld=True)])


def test_epoch_tally_withheld_claim_releases_share():
    """Underwater positions leave their part of the epoch to the pool."""
    store = EpochStore(StateJournal())
    store.append(make_record(1, total_principal=2, bought=10))
    store.apply_claims([EpochClaim(epoch=1, principal=1, tokens=5, withheld=False)])
    released = store.apply_claims([EpochClaim(epoch=1, principal=1, tokens=0, withheld=True)])
    assert released == 5


def test_epoch_store_rollback():
    journal = StateJournal()
    store = EpochStore(journal)
    store.append(make_record(1))

    with pytest.raises(RuntimeError):
        with journal.transaction():
            store.append(make_record(2))
            store.apply_claims([EpochClaim(epoch=1, principal=3, tokens=9, withheld=False)])
            raise RuntimeError()

    assert len(store) == 1
    assert not store.get_tally(1).closed
    assert store.get_tally(1).principal_settled == 0
