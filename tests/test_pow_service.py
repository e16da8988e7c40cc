"""Tests for the proof-of-work challenge gate."""

import threading

import pytest

from zkpaste.services.pow_service import ChallengeGate, leading_zero_bits
from tests.test_utils import FakeClock, failing_nonce, solve_pow


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gate(clock):
    return ChallengeGate(difficulty=8, ttl_seconds=300, clock=clock)


class TestLeadingZeroBits:
    @pytest.mark.parametrize(
        ("digest", "expected"),
        [
            (b"\x80" + b"\x00" * 31, 0),
            (b"\x0f" + b"\xff" * 31, 4),
            (b"\x01" + b"\xff" * 31, 7),
            (b"\x00\x00\x01" + b"\xff" * 29, 23),
            (b"\x00\x40" + b"\xff" * 30, 9),
            (b"\x00" * 32, 256),
        ],
    )
    def test_counts_bits(self, digest, expected):
        assert leading_zero_bits(digest) == expected


class TestIssue:
    def test_issue_records_live_challenge(self, gate, clock):
        challenge = gate.issue()

        assert challenge is not None
        assert challenge.difficulty == 8
        assert challenge.expires_at == clock.now + 300
        assert len(challenge.token) >= 16
        assert len(gate) == 1

    def test_tokens_are_unique(self, gate):
        tokens = {gate.issue().token for _ in range(50)}
        assert len(tokens) == 50

    def test_disabled_gate_issues_nothing(self, clock):
        gate = ChallengeGate(difficulty=8, ttl_seconds=300, enabled=False, clock=clock)
        assert gate.issue() is None
        assert len(gate) == 0


class TestVerify:
    def test_valid_solution_verifies_exactly_once(self, gate):
        challenge = gate.issue()
        nonce = solve_pow(challenge.token, challenge.difficulty)

        assert gate.verify(challenge.token, nonce) is True
        # Replay with the same correct nonce must fail
        assert gate.verify(challenge.token, nonce) is False
        assert len(gate) == 0

    def test_insufficient_work_fails_and_keeps_challenge_live(self, gate):
        challenge = gate.issue()
        bad_nonce = failing_nonce(challenge.token, challenge.difficulty)

        assert gate.verify(challenge.token, bad_nonce) is False
        assert len(gate) == 1

        # The client can keep searching and succeed afterwards
        nonce = solve_pow(challenge.token, challenge.difficulty)
        assert gate.verify(challenge.token, nonce) is True

    def test_unknown_token_fails(self, gate):
        assert gate.verify("never-issued", 0) is False

    def test_expired_challenge_fails(self, gate, clock):
        challenge = gate.issue()
        nonce = solve_pow(challenge.token, challenge.difficulty)

        clock.now = challenge.expires_at
        assert gate.verify(challenge.token, nonce) is False

    @pytest.mark.parametrize("difficulty", [1, 4, 8, 10])
    def test_threshold_for_difficulty(self, clock, difficulty):
        gate = ChallengeGate(difficulty=difficulty, ttl_seconds=60, clock=clock)
        challenge = gate.issue()

        assert gate.verify(challenge.token, failing_nonce(challenge.token, difficulty)) is False
        assert gate.verify(challenge.token, solve_pow(challenge.token, difficulty)) is True

    def test_difficulty_zero_accepts_any_nonce(self, clock):
        gate = ChallengeGate(difficulty=0, ttl_seconds=60, clock=clock)
        challenge = gate.issue()
        assert gate.verify(challenge.token, 12345) is True

    def test_racing_verifications_allow_one_success(self, gate):
        challenge = gate.issue()
        nonce = solve_pow(challenge.token, challenge.difficulty)
        workers = 16
        barrier = threading.Barrier(workers)
        results = []
        results_lock = threading.Lock()

        def attempt():
            barrier.wait()
            ok = gate.verify(challenge.token, nonce)
            with results_lock:
                results.append(ok)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == workers - 1


class TestSweepExpired:
    def test_sweep_removes_only_expired(self, gate, clock):
        old = gate.issue()
        clock.advance(200)
        fresh = gate.issue()
        clock.advance(100)  # old is now exactly at expiry

        assert gate.sweep_expired() == 1
        assert len(gate) == 1
        assert gate.verify(old.token, solve_pow(old.token, old.difficulty)) is False
        assert gate.verify(fresh.token, solve_pow(fresh.token, fresh.difficulty)) is True

    def test_sweep_with_nothing_expired(self, gate):
        gate.issue()
        assert gate.sweep_expired() == 0
