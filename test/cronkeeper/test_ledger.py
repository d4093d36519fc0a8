import pytest

from cronkeeper.errors import InvalidParam, SwapBelowMinimum
from cronkeeper.ledger import (
    Ledger,
    ManualClock,
    OracleExchange,
    SurplusBuffer,
    UpkeepAccounts,
    VestingStreams,
)
from cronkeeper.pricing import StaticPriceFeed


def test_vesting_accrues_linearly_and_claims_reduce_unlocked():
    clock = ManualClock()
    streams = VestingStreams(clock)
    streams.create("1", total=1000, duration=100)

    assert streams.unlocked_amount("1") == 0
    clock.advance(25)
    assert streams.unlocked_amount("1") == 250

    assert streams.claim("1", 100) == 100
    assert streams.unlocked_amount("1") == 150
    assert streams.claim("1", 10_000) == 150
    assert streams.unlocked_amount("1") == 0

    clock.advance(500)
    assert streams.unlocked_amount("1") == 750


def test_vesting_cliff_blocks_early_claims():
    clock = ManualClock()
    streams = VestingStreams(clock)
    streams.create("1", total=1000, duration=100, cliff=50)

    clock.advance(49)
    assert streams.unlocked_amount("1") == 0
    clock.advance(1)
    assert streams.unlocked_amount("1") == 500


def test_transaction_restores_tracked_state_on_failure():
    accounts = UpkeepAccounts({"1": 50})
    surplus = SurplusBuffer()
    ledger = Ledger()
    ledger.track(accounts, surplus)

    with pytest.raises(RuntimeError):
        with ledger.transaction():
            accounts.top_up("1", 100)
            surplus.absorb(7)
            raise RuntimeError("boom")

    assert accounts.balance("1") == 50
    assert surplus.total == 0

    with ledger.transaction():
        accounts.top_up("1", 100)
    assert accounts.balance("1") == 150


def test_nested_transaction_rolls_back_only_inner_block():
    accounts = UpkeepAccounts({"1": 0})
    ledger = Ledger()
    ledger.track(accounts)

    with ledger.transaction():
        accounts.top_up("1", 10)
        with pytest.raises(ValueError):
            with ledger.transaction():
                accounts.top_up("1", 5)
                raise ValueError("inner")
        assert accounts.balance("1") == 10

    assert accounts.balance("1") == 10


def test_ledger_only_tracks_journaled_objects():
    ledger = Ledger()

    with pytest.raises(InvalidParam):
        ledger.track(object())


def test_exchange_fills_at_oracle_rate_minus_fee():
    exchange = OracleExchange(StaticPriceFeed(10**8), StaticPriceFeed(5 * 10**8), fee_bps=30)

    assert exchange.quote(1000) == 199
    assert exchange.swap(1000, 196, b"\x01") == 199
    assert exchange.total_in == 1000
    assert exchange.swaps == [(1000, 196, b"\x01")]


def test_exchange_rejects_swaps_below_minimum():
    exchange = OracleExchange(StaticPriceFeed(10**8), StaticPriceFeed(5 * 10**8), fee_bps=500)

    with pytest.raises(SwapBelowMinimum) as excinfo:
        exchange.swap(1000, 196, b"\x01")

    assert excinfo.value.minimum == 196
    assert exchange.total_in == 0
    assert exchange.swaps == []


def test_accounts_charge_never_goes_negative():
    accounts = UpkeepAccounts({"1": 3})

    assert accounts.charge("1", 5) == 3
    assert accounts.balance("1") == 0


def test_clock_only_moves_forward():
    clock = ManualClock(5)

    with pytest.raises(InvalidParam):
        clock.advance(-1)
    with pytest.raises(InvalidParam):
        clock.set(4)
    clock.set(9)
    assert clock() == 9
