"""
Unit tests for challenge issuance and the challenge store.
"""

import base64
import threading
from unittest.mock import patch

import pytest

from integrity_relay.services.integrity.base import Challenge, ChallengeMode
from integrity_relay.services.integrity.challenge import (
    ChallengeIssuer,
    ChallengeStore,
    compute_request_hash,
    generate_challenge_value,
)
from integrity_relay.services.integrity.errors import EntropySourceUnavailable, NoSuchChallenge


class TestChallengeGeneration:
    """Test cases for challenge value generation."""

    def test_value_is_web_safe_base64_with_256_bits(self):
        """Challenge values carry 32 random bytes, base64url without padding."""
        value = generate_challenge_value()

        assert "=" not in value
        assert "+" not in value and "/" not in value
        raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
        assert len(raw) == 32

    def test_values_are_unique(self):
        values = {generate_challenge_value() for _ in range(200)}
        assert len(values) == 200

    def test_entropy_source_failure(self):
        """An unreadable random source is surfaced, not papered over."""
        with patch("integrity_relay.services.integrity.challenge.secrets.token_bytes",
                   side_effect=OSError("getrandom failed")):
            with pytest.raises(EntropySourceUnavailable):
                generate_challenge_value()

    def test_request_hash_binds_payload(self):
        """The request hash changes with either the challenge or the payload."""
        base = compute_request_hash("N1", '{"amount": 10}')

        assert base == compute_request_hash("N1", '{"amount": 10}')
        assert base != compute_request_hash("N2", '{"amount": 10}')
        assert base != compute_request_hash("N1", '{"amount": 11}')
        assert "=" not in base


class TestChallengeStore:
    """Test cases for ChallengeStore."""

    def test_put_and_consume(self, store):
        store.put(Challenge(session_id="abc", value="N1"))

        challenge = store.consume("abc")

        assert challenge.value == "N1"
        assert challenge.consumed is True
        assert store.get_stats()["consumed"] == 1

    def test_consume_missing(self, store):
        with pytest.raises(NoSuchChallenge) as exc_info:
            store.consume("unknown")

        assert exc_info.value.session_id == "unknown"
        assert store.get_stats()["misses"] == 1

    def test_consume_twice_rejects_replay(self, store):
        """A challenge consumed once can never be consumed again."""
        store.put(Challenge(session_id="abc", value="N1"))
        store.consume("abc")

        with pytest.raises(NoSuchChallenge) as exc_info:
            store.consume("abc")

        assert exc_info.value.reason == "already consumed"
        assert store.get_stats()["replays"] == 1

    def test_expired_challenge_is_not_honored(self, store, clock):
        store.put(Challenge(session_id="abc", value="N1"))

        clock.advance(301)

        with pytest.raises(NoSuchChallenge):
            store.consume("abc")

    def test_challenge_valid_just_before_ttl(self, store, clock):
        store.put(Challenge(session_id="abc", value="N1"))

        clock.advance(299)

        assert store.consume("abc").value == "N1"

    def test_consumed_flag_does_not_extend_ttl(self, store, clock):
        store.put(Challenge(session_id="abc", value="N1"))
        clock.advance(100)
        store.consume("abc")
        clock.advance(250)

        assert store.get("abc") is None

    def test_put_overwrites_previous(self, store):
        store.put(Challenge(session_id="abc", value="N1"))
        store.put(Challenge(session_id="abc", value="N2"))

        assert store.consume("abc").value == "N2"
        assert store.get_stats()["overwritten"] == 1

    def test_sweep_removes_expired(self, store, clock):
        store.put(Challenge(session_id="a", value="N1"))
        clock.advance(200)
        store.put(Challenge(session_id="b", value="N2"))
        clock.advance(150)

        removed = store.sweep()

        assert removed == 1
        assert len(store) == 1
        assert store.get("b") is not None

    def test_sweep_counts_every_expired_entry(self, store, clock, caplog):
        store.put(Challenge(session_id="a", value="N1"))
        store.put(Challenge(session_id="b", value="N2"))
        clock.advance(301)

        with caplog.at_level("DEBUG", logger="integrity_relay.services.integrity.challenge"):
            assert store.sweep() == 2

        assert "Swept 2 expired challenges" in caplog.text
        assert store.sweep() == 0

    def test_sessions_are_independent(self, store):
        store.put(Challenge(session_id="a", value="N1"))
        store.put(Challenge(session_id="b", value="N2"))

        store.consume("a")

        assert store.consume("b").value == "N2"

    def test_concurrent_consume_single_winner(self):
        """Two racing consumers of one session cannot both succeed."""
        store = ChallengeStore(maxsize=100, ttl=300)
        store.put(Challenge(session_id="abc", value="N1"))
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                store.consume("abc")
                results.append(True)
            except NoSuchChallenge:
                results.append(False)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert results.count(False) == 7


class TestChallengeIssuer:
    """Test cases for ChallengeIssuer."""

    def test_issue_challenge(self, store):
        issuer = ChallengeIssuer(store)

        challenge = issuer.issue_challenge("abc")

        assert challenge.session_id == "abc"
        assert challenge.mode == ChallengeMode.CLASSIC
        assert challenge.consumed is False
        assert challenge.ttl_seconds == 300
        assert (challenge.expires_at - challenge.issued_at).total_seconds() == 300
        assert store.get("abc") is challenge

    def test_issue_standard_mode(self, store):
        issuer = ChallengeIssuer(store)

        challenge = issuer.issue_challenge("abc", "standard")

        assert challenge.mode == ChallengeMode.STANDARD

    def test_second_issue_invalidates_first(self, store):
        """Only the latest challenge for a session is honorable."""
        values = iter(["N1", "N2"])
        issuer = ChallengeIssuer(store, generator=lambda: next(values))

        first = issuer.issue_challenge("abc")
        second = issuer.issue_challenge("abc")

        consumed = store.consume("abc")
        assert consumed.value == second.value == "N2"
        assert consumed.value != first.value

    def test_empty_session_rejected(self, store):
        issuer = ChallengeIssuer(store)

        with pytest.raises(ValueError):
            issuer.issue_challenge("")

    def test_entropy_failure_stores_nothing(self, store):
        def broken():
            raise EntropySourceUnavailable("no entropy")

        issuer = ChallengeIssuer(store, generator=broken)

        with pytest.raises(EntropySourceUnavailable):
            issuer.issue_challenge("abc")
        assert store.get("abc") is None

    def test_expected_binding_standard_mode(self):
        challenge = Challenge(session_id="abc", value="N1", mode=ChallengeMode.STANDARD)

        assert challenge.expected_binding() == "N1"
        assert challenge.expected_binding("payload") == compute_request_hash("N1", "payload")

    def test_expected_binding_classic_ignores_payload(self):
        challenge = Challenge(session_id="abc", value="N1")

        assert challenge.expected_binding("payload") == "N1"
