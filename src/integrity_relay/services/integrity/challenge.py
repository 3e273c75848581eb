"""
Challenge issuance and single-use challenge storage.
"""

import base64
import hashlib
import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from .base import Challenge, ChallengeMode
from .errors import EntropySourceUnavailable, NoSuchChallenge

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def compute_request_hash(challenge_value: str, request_payload: str) -> str:
    """
    Request hash binding a challenge to the content of a protected request.

    The app computes the same value and passes it as ``requestHash``.
    """
    digest = hashlib.sha256(f"{challenge_value}.{request_payload}".encode("utf-8")).digest()
    return _b64url(digest)


def generate_challenge_value(num_bytes: int = CHALLENGE_BYTES) -> str:
    """
    Generate a web-safe challenge value from the OS CSPRNG.

    Raises:
        EntropySourceUnavailable: if the random source cannot be read
    """
    try:
        raw = secrets.token_bytes(num_bytes)
    except (OSError, NotImplementedError) as e:
        logger.error(f"Secure random source unavailable: {e}")
        raise EntropySourceUnavailable(str(e)) from e
    return _b64url(raw)


class ChallengeStore:
    """
    Thread-safe TTL store of challenges keyed by session id.

    Lookup and mark-consumed happen in one critical section so two
    concurrent verifications of the same session cannot both see an
    unconsumed challenge. Expired entries are dropped lazily on read and by
    ``sweep()``.
    """

    def __init__(self, maxsize: int = 100000, ttl: int = 300,
                 timer: Callable[[], float] = time.monotonic):
        """
        Initialize challenge store.

        Args:
            maxsize: Maximum number of live challenges
            ttl: Time-to-live in seconds (default: 5 minutes)
            timer: Monotonic clock, replaceable in tests
        """
        self.ttl = ttl
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.RLock()
        self._stats = {
            "issued": 0,
            "consumed": 0,
            "replays": 0,
            "misses": 0,
            "overwritten": 0,
        }

        logger.info(f"Challenge store initialized - Max size: {maxsize}, TTL: {ttl}s")

    def put(self, challenge: Challenge) -> None:
        """Store a challenge, replacing any previous one for the session."""
        with self._lock:
            previous = self._cache.get(challenge.session_id)
            if previous is not None and not previous.consumed:
                self._stats["overwritten"] += 1
                logger.debug(f"Replacing unconsumed challenge for session {challenge.session_id}")
            self._cache[challenge.session_id] = challenge
            self._stats["issued"] += 1

    def get(self, session_id: str) -> Optional[Challenge]:
        """Return the live challenge for a session without consuming it."""
        with self._lock:
            return self._cache.get(session_id)

    def consume(self, session_id: str) -> Challenge:
        """
        Atomically fetch and mark the session's challenge consumed.

        Raises:
            NoSuchChallenge: if missing, expired or already consumed
        """
        with self._lock:
            challenge = self._cache.get(session_id)
            if challenge is None:
                self._stats["misses"] += 1
                raise NoSuchChallenge(session_id, "missing or expired")
            if challenge.consumed:
                self._stats["replays"] += 1
                logger.warning(f"Replay rejected for session {session_id}")
                raise NoSuchChallenge(session_id, "already consumed")
            challenge.consumed = True
            self._stats["consumed"] += 1
            return challenge

    def sweep(self) -> int:
        """Drop expired challenges. Returns the number removed."""
        with self._lock:
            # Size accessors expire implicitly; count what expire() drops.
            removed = len(self._cache.expire())
        if removed:
            logger.debug(f"Swept {removed} expired challenges")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "ttl": self._cache.ttl,
                **self._stats,
            }


class ChallengeIssuer:
    """Issues single-use challenges and records them in the store."""

    def __init__(self, store: ChallengeStore,
                 generator: Callable[[], str] = generate_challenge_value):
        self.store = store
        self._generate = generator

    def issue_challenge(self, session_id: str,
                        mode: ChallengeMode = ChallengeMode.CLASSIC) -> Challenge:
        """
        Issue a fresh challenge for a session.

        Args:
            session_id: Client session or request correlation id
            mode: Request mode the challenge will be bound into

        Returns:
            The stored Challenge

        Raises:
            ValueError: if session_id is empty
            EntropySourceUnavailable: if no secure randomness is available
        """
        if not session_id:
            raise ValueError("session_id is required")

        challenge = Challenge(
            session_id=session_id,
            value=self._generate(),
            mode=ChallengeMode(mode),
            ttl_seconds=self.store.ttl,
        )
        self.store.put(challenge)
        logger.info(f"Challenge issued - Session: {session_id}, Mode: {challenge.mode.value}")
        return challenge
