"""
Remote ledger for MathQuest.

Reads student profiles from and reports XP events to Supabase (PostgREST)
with retry logic for rate limits.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import requests

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 280
MAX_UPDATED_BY_LENGTH = 120
DEFAULT_REASON = "Manual adjustment"
DEFAULT_UPDATED_BY = "GameClient"


class RateLimitError(Exception):
    """Raised when Supabase returns a rate limit error."""
    pass


class PersistenceError(Exception):
    """Raised when Supabase operations fail."""
    pass


class RemoteLedger(Protocol):
    """Authoritative XP record keeper that receives grant deltas."""

    def report_delta(self, player_id: str, delta: int, reason: str, source: str) -> str | None:
        """Record an XP delta; return None on success or an error message."""
        ...


class ProfileSource(Protocol):
    """Supplies a player's starting total XP at session start."""

    def load_starting_xp(self, player_id: str) -> int:
        ...


@dataclass
class SupabaseConfig:
    """Connection settings for the Supabase project."""

    url: str
    anon_key: str
    rest_path: str = "/rest/v1"
    timeout: float = 10

    @classmethod
    def from_secrets(cls, secrets: Mapping[str, Any]) -> "SupabaseConfig":
        """Build config from a Streamlit-secrets-like mapping.

        Expects ``supabase_url`` and ``supabase_anon_key`` keys.

        Raises:
            KeyError: If a required key is missing
        """
        return cls(
            url=str(secrets["supabase_url"]).rstrip("/"),
            anon_key=secrets["supabase_anon_key"],
            rest_path=secrets.get("supabase_rest_path", "/rest/v1"),
            timeout=float(secrets.get("supabase_timeout", 10)),
        )

    @property
    def rest_url(self) -> str:
        return f"{self.url}{self.rest_path}"


@dataclass
class StudentProfile:
    """A row from the ``students`` table."""

    id: str
    name: str = ""
    xp: int = 0
    xp_goal: int = 0
    level: int = 1
    behaviour: str = ""
    last_active: str = ""
    streak_days: int = 0
    created_at: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "StudentProfile":
        return cls(
            id=str(record.get("id", "")),
            name=record.get("name") or "",
            xp=int(record.get("xp") or 0),
            xp_goal=int(record.get("xp_goal") or 0),
            level=int(record.get("level") or 1),
            behaviour=record.get("behaviour") or "",
            last_active=record.get("last_active") or "",
            streak_days=int(record.get("streak_days") or 0),
            created_at=record.get("created_at") or "",
        )


def is_rate_limit_error(error: Exception) -> bool:
    """
    Decide whether an error is a rate limit that is worth retrying.

    requests errors are classified by the HTTP status only, because their
    messages embed the request URL and a student id may contain "429".
    Other errors fall back to matching the message text.

    Args:
        error: The exception raised by the wrapped operation

    Returns:
        True if the operation was rate limited
    """
    if isinstance(error, requests.RequestException):
        response = error.response
        return response is not None and response.status_code == 429

    error_msg = str(error).lower()
    return ('rate limit' in error_msg or
            'quota' in error_msg or
            '429' in error_msg)


def retry_with_backoff(func: Callable, max_attempts: int = 3) -> Any:
    """
    Retry a function with exponential backoff for rate limit errors.

    Implements exponential backoff: 1s, 2s, 4s between attempts.

    Args:
        func: The function to retry (should be a callable with no arguments)
        max_attempts: Maximum number of retry attempts (default: 3)

    Returns:
        The return value of the successful function call

    Raises:
        RateLimitError: If all retry attempts fail with rate limit errors
        PersistenceError: If the function fails with a non-rate-limit error
    """
    for attempt in range(max_attempts):
        try:
            return func()
        except Exception as e:
            if is_rate_limit_error(e):
                if attempt == max_attempts - 1:
                    raise RateLimitError(f"Rate limit exceeded after {max_attempts} attempts") from e

                wait_time = 2 ** attempt
                time.sleep(wait_time)
            else:
                raise PersistenceError(f"Database operation failed: {e}") from e

    raise RateLimitError(f"Rate limit exceeded after {max_attempts} attempts")


def build_xp_event_payload(player_id: str, delta: int, reason: str | None,
                           updated_by: str | None) -> dict:
    """
    Build the ``add_xp_event`` RPC payload.

    Reason and author are trimmed and truncated to the column limits; blank
    values fall back to defaults.

    Args:
        player_id: Student UUID
        delta: XP delta (the grant amount)
        reason: Human-readable reason for the audit trail
        updated_by: System or person that produced the delta

    Returns:
        Payload dict with p_student_id, p_delta, p_reason, p_updated_by
    """
    reason = (reason or "").strip()[:MAX_REASON_LENGTH] or DEFAULT_REASON
    updated_by = (updated_by or "").strip()[:MAX_UPDATED_BY_LENGTH] or DEFAULT_UPDATED_BY

    return {
        "p_student_id": player_id,
        "p_delta": int(delta),
        "p_reason": reason,
        "p_updated_by": updated_by,
    }


class SupabaseLedger:
    """
    Supabase-backed remote ledger and profile source.

    Args:
        config: Supabase connection settings
        session: Optional requests session (defaults to a new one)
    """

    def __init__(self, config: SupabaseConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "apikey": self.config.anon_key,
            "Authorization": f"Bearer {self.config.anon_key}",
        }

    def get_student(self, player_id: str) -> StudentProfile | None:
        """
        Fetch a student's profile.

        Args:
            player_id: Student UUID

        Returns:
            StudentProfile if found, None if the student doesn't exist

        Raises:
            PersistenceError: If the request fails
            RateLimitError: If rate limit is exceeded after retries
        """
        def _get_student():
            response = self.session.get(
                f"{self.config.rest_url}/students",
                params={"id": f"eq.{player_id}", "select": "*"},
                headers=self._headers(),
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            rows = response.json()

            if not rows:
                return None

            return StudentProfile.from_record(rows[0])

        return retry_with_backoff(_get_student)

    def load_starting_xp(self, player_id: str) -> int:
        """
        Load the student's total XP for session start.

        Returns 0 for unknown students so a new player starts at level 1.

        Raises:
            PersistenceError: If the request fails
            RateLimitError: If rate limit is exceeded after retries
        """
        student = self.get_student(player_id)

        if student is None:
            logger.warning(f"Student {player_id} not found; starting from 0 XP")
            return 0

        return max(0, student.xp)

    def report_delta(self, player_id: str, delta: int, reason: str, source: str) -> str | None:
        """
        Record an XP event through the ``add_xp_event`` RPC.

        Fail-open: errors are logged and returned, never raised.

        Args:
            player_id: Student UUID
            delta: XP amount granted
            reason: Reason for the audit trail
            source: System that awarded the XP (stored as updated_by)

        Returns:
            None on success, error message string on failure
        """
        payload = build_xp_event_payload(player_id, delta, reason, source)

        def _add_xp_event():
            response = self.session.post(
                f"{self.config.rest_url}/rpc/add_xp_event",
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            return True

        try:
            retry_with_backoff(_add_xp_event)
        except (PersistenceError, RateLimitError) as e:
            logger.error(f"Failed to add XP for student {player_id}: {e}")
            return str(e)

        logger.info(f"Added {delta} XP for reason: {payload['p_reason']}")
        return None

    def update_student(self, player_id: str, fields: Mapping[str, Any]) -> str | None:
        """
        Patch columns on a student row (streak, last_active, behaviour).

        Fail-open like report_delta.

        Args:
            player_id: Student UUID
            fields: Column values to write

        Returns:
            None on success, error message string on failure
        """
        headers = {**self._headers(), "Prefer": "return=minimal"}

        def _patch_student():
            response = self.session.patch(
                f"{self.config.rest_url}/students",
                params={"id": f"eq.{player_id}"},
                json=dict(fields),
                headers=headers,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            return True

        try:
            retry_with_backoff(_patch_student)
        except (PersistenceError, RateLimitError) as e:
            logger.error(f"Failed to update student {player_id}: {e}")
            return str(e)

        logger.info(f"Updated student {player_id}: {', '.join(fields)}")
        return None
