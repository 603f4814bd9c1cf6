"""
Unit tests for the ThrottlingLedger.

Tests failure streaks, bans, stake slashing and admission queries.
"""

from __future__ import annotations

import pytest

from entrypoint.config import ThrottleConfig
from entrypoint.systems.throttle import ThrottleRecord, ThrottlingLedger


# ─── Fixtures ─────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_ledger(clock: FakeClock | None = None, **kwargs) -> ThrottlingLedger:
    defaults = {
        "failure_threshold": 3,
        "ban_duration_s": 60.0,
        "slash_fraction": 0.5,
    }
    return ThrottlingLedger(ThrottleConfig(**{**defaults, **kwargs}), clock=clock or FakeClock())


# ─── Tests: Failure streaks ───────────────────────────────────────


class TestFailureStreak:
    def test_first_failure_creates_record(self):
        ledger = make_ledger()
        record = ledger.record_failure("alice")
        assert record.consecutive_failures == 1
        assert record.total_failures == 1
        assert record.last_failure_at == 1_000.0
        assert ledger.is_banned("alice") is False

    def test_below_threshold_not_banned(self):
        ledger = make_ledger()
        ledger.record_failure("alice")
        ledger.record_failure("alice")
        assert ledger.is_banned("alice") is False

    def test_threshold_bans(self):
        ledger = make_ledger()
        for _ in range(3):
            record = ledger.record_failure("alice")
        assert record.banned_until == 1_060.0
        assert ledger.is_banned("alice") is True
        assert ledger.banned_senders() == ["alice"]

    def test_success_resets_streak_but_keeps_totals(self):
        ledger = make_ledger()
        ledger.record_failure("alice")
        ledger.record_failure("alice")
        record = ledger.record_success("alice")
        assert record.consecutive_failures == 0
        assert record.total_failures == 2

        ledger.record_failure("alice")
        assert ledger.is_banned("alice") is False

    def test_success_for_unknown_sender_creates_nothing(self):
        ledger = make_ledger()
        record = ledger.record_success("bob")
        assert record == ThrottleRecord(sender="bob")
        assert ledger.get("bob") is None

    def test_senders_are_independent(self):
        ledger = make_ledger(failure_threshold=1)
        ledger.record_failure("alice")
        assert ledger.is_banned("alice") is True
        assert ledger.is_banned("bob") is False


# ─── Tests: Ban expiry ────────────────────────────────────────────


class TestBanExpiry:
    def test_ban_expires_with_clock(self):
        clock = FakeClock()
        ledger = make_ledger(clock, failure_threshold=1)
        ledger.record_failure("alice")
        clock.now += 59.0
        assert ledger.is_banned("alice") is True
        clock.now += 1.0
        assert ledger.is_banned("alice") is False

    def test_explicit_time_query(self):
        ledger = make_ledger(failure_threshold=1)
        ledger.record_failure("alice")
        assert ledger.is_banned("alice", at_time=1_030.0) is True
        assert ledger.is_banned("alice", at_time=2_000.0) is False

    def test_further_failures_extend_ban(self):
        clock = FakeClock()
        ledger = make_ledger(clock, failure_threshold=1)
        ledger.record_failure("alice")
        clock.now += 30.0
        record = ledger.record_failure("alice")
        assert record.banned_until == 1_090.0

    def test_success_does_not_lift_ban(self):
        ledger = make_ledger(failure_threshold=1)
        ledger.record_failure("alice")
        ledger.record_success("alice")
        assert ledger.is_banned("alice") is True

    def test_unban_lifts_ban_and_streak(self):
        ledger = make_ledger(failure_threshold=1)
        ledger.record_failure("alice")
        ledger.unban("alice")
        assert ledger.is_banned("alice") is False
        assert ledger.get("alice").consecutive_failures == 0

    def test_unban_unknown_sender_is_noop(self):
        make_ledger().unban("nobody")


# ─── Tests: Stake ─────────────────────────────────────────────────


class TestStake:
    def test_deposit_accumulates(self):
        ledger = make_ledger()
        ledger.deposit_stake("alice", 100)
        record = ledger.deposit_stake("alice", 50)
        assert record.stake_held == 150

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_deposit_rejected(self, amount):
        with pytest.raises(ValueError, match="positive"):
            make_ledger().deposit_stake("alice", amount)

    def test_ban_slashes_stake(self):
        ledger = make_ledger(failure_threshold=2)
        ledger.deposit_stake("alice", 1_000)
        ledger.record_failure("alice")
        assert ledger.get("alice").stake_slashed == 0

        record = ledger.record_failure("alice")
        assert record.stake_held == 500
        assert record.stake_slashed == 500

        record = ledger.record_failure("alice")
        assert record.stake_held == 250
        assert record.stake_slashed == 750

    def test_zero_slash_fraction_keeps_stake(self):
        ledger = make_ledger(failure_threshold=1, slash_fraction=0.0)
        ledger.deposit_stake("alice", 100)
        record = ledger.record_failure("alice")
        assert record.stake_held == 100
        assert record.stake_slashed == 0


# ─── Tests: Isolation & stats ─────────────────────────────────────


def test_returned_records_are_copies():
    ledger = make_ledger()
    record = ledger.record_failure("alice")
    record.consecutive_failures = 99
    record.banned_until = 10**9
    assert ledger.get("alice").consecutive_failures == 1
    assert ledger.is_banned("alice") is False


def test_hex_sender_spellings_share_one_record():
    ledger = make_ledger(failure_threshold=1)
    ledger.record_failure("0xABCdef")
    assert ledger.is_banned("0xabcdef") is True
    assert ledger.is_banned(" 0XABCDEF ") is True
    assert ledger.get("0xAbCdEf").sender == "0xabcdef"
    assert ledger.banned_senders() == ["0xabcdef"]

    ledger.unban("0XABCDEF")
    assert ledger.is_banned("0xabcdef") is False


def test_non_hex_senders_stay_case_sensitive():
    ledger = make_ledger(failure_threshold=1)
    ledger.record_failure("Alice")
    assert ledger.is_banned("Alice") is True
    assert ledger.is_banned("alice") is False


def test_stats():
    ledger = make_ledger(failure_threshold=1, slash_fraction=0.1)
    ledger.deposit_stake("alice", 100)
    ledger.record_failure("alice")
    ledger.deposit_stake("bob", 10)
    assert ledger.stats == {
        "tracked_senders": 2,
        "banned_senders": 1,
        "total_failures": 1,
        "total_slashed": 10,
    }


def test_config_rejects_zero_threshold():
    with pytest.raises(ValueError):
        ThrottleConfig(failure_threshold=0)
