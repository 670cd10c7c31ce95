"""Session-scoped XP tracking for MathQuest.

The ProgressTracker owns a player's total XP for one play session. It applies
XP grants, detects level-ups, notifies an attached display, and forwards each
grant to a remote ledger without blocking the caller.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Protocol, Tuple

from mathquest.ledger import ProfileSource, RemoteLedger
from mathquest.levels import LevelProgress, calculate_level, progress_snapshot

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Puzzle solved"
DEFAULT_SOURCE = "GameClient"


class ProgressObserver(Protocol):
    """Receives XP and level-up notifications (HUD, dashboards, etc.)."""

    def on_xp_changed(self, new_total_xp: int) -> None:
        ...

    def on_level_up(self, new_level: int) -> None:
        ...


@dataclass(frozen=True)
class XPGrantEvent:
    """Audit record produced for every applied grant."""

    amount: int
    reason: str
    source: str
    timestamp: str


def validate_grant_amount(amount) -> Tuple[bool, str]:
    """Validate an XP grant amount.

    Args:
        amount: The amount passed to grant_xp

    Returns:
        Tuple of (is_valid, error_message)
        - is_valid: True if the amount is a non-negative integer
        - error_message: Empty string if valid, error description if invalid
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        return False, f"XP amount must be an integer (got {type(amount).__name__})"

    if amount < 0:
        return False, f"XP amount cannot be negative (got {amount}); use initialize to correct totals"

    return True, ""


class ProgressTracker:
    """Authority for a player's XP during one play session.

    Local state is optimistic: it is never rolled back when a remote report
    fails, and it is reconciled with the remote total only through
    ``initialize`` on the next load.

    Args:
        ledger: Remote ledger that receives grant deltas (optional)
        player_id: Student identifier used for remote reports (optional)
        observer: Display notified of XP changes and level-ups (optional)
        source: Default ``updated_by`` tag for grants
        executor: Executor for remote reports; a single-worker pool owned
            by the tracker is created when omitted
    """

    def __init__(
        self,
        ledger: RemoteLedger | None = None,
        player_id: str | None = None,
        observer: ProgressObserver | None = None,
        source: str = DEFAULT_SOURCE,
        executor: Executor | None = None,
    ):
        self.ledger = ledger
        self.player_id = player_id
        self.source = source
        self._observer = observer
        self._current_total_xp = 0
        self._current_level = calculate_level(0)
        # Reentrant so an observer may call back into the tracker
        self._lock = threading.RLock()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="xp-report")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    @property
    def current_total_xp(self) -> int:
        return self._current_total_xp

    @property
    def current_level(self) -> int:
        return self._current_level

    @property
    def observer(self) -> ProgressObserver | None:
        return self._observer

    def progress(self) -> LevelProgress:
        return progress_snapshot(self._current_total_xp)

    def initialize(self, total_xp: int) -> None:
        """Set total XP directly, e.g. after loading the player's profile.

        No grant event is produced, nothing is reported remotely and no
        level-up fires. The attached display is refreshed.
        """
        with self._lock:
            self._current_total_xp = max(0, int(total_xp))
            self._current_level = calculate_level(self._current_total_xp)
            self._notify_xp_changed(self._current_total_xp)

    def initialize_from_profile(self, profile_source: ProfileSource, player_id: str) -> None:
        """Load the starting XP for ``player_id`` and adopt that player id."""
        starting_xp = profile_source.load_starting_xp(player_id)
        self.player_id = player_id
        self.initialize(starting_xp)

    def set_observer(self, observer: ProgressObserver | None) -> None:
        """Attach or replace the display and push the current state to it."""
        with self._lock:
            self._observer = observer
            self._notify_xp_changed(self._current_total_xp)

    def grant_xp(self, amount: int, reason: str = DEFAULT_REASON,
                 source: str | None = None) -> XPGrantEvent | None:
        """Award XP to the player.

        Negative and non-integer amounts are rejected with a warning and leave
        state untouched. A zero amount is a silent no-op. Otherwise the total
        is increased, the display is notified, and a single level-up
        notification carrying the final level fires if the level rose.

        Args:
            amount: XP to add (non-negative integer)
            reason: Human-readable reason for the audit trail
            source: System awarding the XP (defaults to the tracker's source)

        Returns:
            The applied XPGrantEvent, or None when nothing was applied
        """
        is_valid, error_message = validate_grant_amount(amount)
        if not is_valid:
            logger.warning(f"Rejected XP grant ({reason}): {error_message}")
            return None

        if amount == 0:
            return None

        event = XPGrantEvent(
            amount=amount,
            reason=reason,
            source=source or self.source,
            timestamp=datetime.now(UTC).isoformat().replace('+00:00', 'Z'),
        )

        with self._lock:
            previous_level = self._current_level
            self._current_total_xp += amount
            self._current_level = calculate_level(self._current_total_xp)
            new_level = self._current_level

            # Notifications and report submission stay in grant order
            self._notify_xp_changed(self._current_total_xp)

            if new_level > previous_level:
                logger.info(f"Player {self.player_id or '<local>'} reached level {new_level}")
                self._notify_level_up(new_level)

            self._schedule_report(event)

        return event

    def wait_for_reports(self, timeout: float | None = None) -> None:
        """Block until all scheduled remote reports have finished."""
        with self._pending_lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self) -> None:
        """Finish pending reports and release the owned executor."""
        self.wait_for_reports()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _schedule_report(self, event: XPGrantEvent) -> Future | None:
        if self.ledger is None or not self.player_id:
            logger.debug("No ledger or player id; XP will not sync to the remote ledger")
            return None

        future = self._executor.submit(self._report, self.player_id, event)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _report(self, player_id: str, event: XPGrantEvent) -> str | None:
        try:
            error = self.ledger.report_delta(player_id, event.amount, event.reason, event.source)
        except Exception as e:
            error = f"Unexpected error: {e}"

        if error:
            logger.warning(f"Failed to report {event.amount} XP ({event.reason}) for {player_id}: {error}")
        else:
            logger.info(f"Reported {event.amount} XP ({event.reason}) for {player_id}")

        return error

    def _notify_xp_changed(self, total_xp: int) -> None:
        observer = self._observer
        if observer is None:
            return
        try:
            observer.on_xp_changed(total_xp)
        except Exception:
            logger.exception("XP observer failed in on_xp_changed")

    def _notify_level_up(self, level: int) -> None:
        observer = self._observer
        if observer is None:
            return
        try:
            observer.on_level_up(level)
        except Exception:
            logger.exception("XP observer failed in on_level_up")
