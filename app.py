"""
MathQuest - Main Streamlit Application

Entry point for the MathQuest progression front end. Orchestrates student
login, XP tracking, reward handling, and UI rendering.
"""

import logging

import streamlit as st

from mathquest.analytics import send_login_metric, send_xp_metric
from mathquest.engagement import build_login_update
from mathquest.ledger import PersistenceError, RateLimitError, SupabaseConfig, SupabaseLedger
from mathquest.rewards import XPRewardSystem
from mathquest.tracker import ProgressTracker
from mathquest.ui_components import (
    StreamlitProgressDisplay,
    render_profile,
    render_reward_board,
    render_sidebar_login,
    render_tavern,
    render_xp_hud,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Page configuration
st.set_page_config(
    page_title="MathQuest",
    page_icon="🧮",
    layout="wide"
)


def initialize_session_state():
    """Initialize Streamlit session state with default values.

    Session state fields:
    - authenticated: bool - Whether a student session is active
    - student_id: str - Student UUID
    - student_name: str - Display name
    - behaviour: str - Teacher-facing behaviour flag
    - streak_days: int - Consecutive days with a login
    - xp: int - Total experience points (mirrored by the tracker's observer)
    - level: int - Derived level
    - pending_level_up: int | None - Level reached by the last grant, if any
    - tracker: ProgressTracker | None - The session's XP authority
    """
    defaults = {
        "authenticated": False,
        "student_id": "",
        "student_name": "",
        "behaviour": "",
        "streak_days": 0,
        "xp": 0,
        "level": 1,
        "pending_level_up": None,
        "tracker": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


@st.cache_resource
def get_ledger():
    """Create the Supabase ledger from Streamlit secrets.

    Raises:
        KeyError: If secrets are not configured
    """
    try:
        config = SupabaseConfig.from_secrets(st.secrets)
        return SupabaseLedger(config)
    except Exception as e:
        logger.error(f"Failed to load Supabase configuration: {e}")
        raise


def get_datadog_api_key():
    """Load Datadog API key from Streamlit secrets (optional)."""
    return st.secrets.get("datadog_api_key")


def handle_login(ledger, datadog_api_key):
    """Start a session for the submitted student id.

    Updates the login streak and behaviour flag on the student row before
    the tracker takes over.

    Args:
        ledger: Supabase ledger used as profile source and remote ledger
        datadog_api_key: Datadog API key, or None to skip metrics
    """
    if "login_submission" not in st.session_state:
        return

    student_id = st.session_state["login_submission"].get("student_id", "").strip()
    del st.session_state["login_submission"]

    if not student_id:
        st.sidebar.error("Please enter your student ID")
        return

    try:
        student = ledger.get_student(student_id)
    except (PersistenceError, RateLimitError) as e:
        logger.error(f"Login failed for student {student_id}: {e}")
        st.sidebar.error("Unable to connect to database. Please try again.")
        return

    if student is None:
        st.sidebar.error("Student not found")
        return

    login_update = build_login_update(student)
    ledger.update_student(student.id, login_update)

    if datadog_api_key:
        send_login_metric(login_update["streak_days"], login_update["behaviour"], datadog_api_key)

    tracker = ProgressTracker(
        ledger=ledger,
        player_id=student.id,
        observer=StreamlitProgressDisplay(),
        source=st.secrets.get("updated_by", "GameClient"),
    )
    tracker.initialize(student.xp)

    st.session_state.authenticated = True
    st.session_state.student_id = student.id
    st.session_state.student_name = student.name
    st.session_state.behaviour = login_update["behaviour"]
    st.session_state.streak_days = login_update["streak_days"]
    st.session_state.tracker = tracker

    st.sidebar.success(f"Welcome, {student.name or student.id}!")
    st.rerun()


def handle_reward_submission(tracker, datadog_api_key):
    """Apply a reward chosen on the reward board.

    Args:
        tracker: The session's ProgressTracker
        datadog_api_key: Datadog API key, or None to skip metrics
    """
    if "reward_submission" not in st.session_state:
        return

    submission = st.session_state["reward_submission"]
    del st.session_state["reward_submission"]

    rewards = XPRewardSystem(tracker)
    kind = submission.get("kind")
    previous_level = tracker.current_level

    if kind == "puzzle":
        events = [rewards.reward_puzzle_solved(submission["name"], submission.get("difficulty", 1))]
    elif kind == "quest":
        events = [rewards.reward_quest_completion(submission["name"])]
    elif kind == "daily_login":
        events = [rewards.reward_daily_login()]
        if st.session_state.streak_days > 1:
            events.append(rewards.reward_streak(st.session_state.streak_days))
    else:
        logger.warning(f"Unknown reward submission: {submission}")
        return

    events = [event for event in events if event is not None]
    if not events:
        st.error("No XP was awarded.")
        return

    level = tracker.current_level
    for event in events:
        if datadog_api_key:
            send_xp_metric(event.amount, event.source, datadog_api_key,
                           level=level, leveled_up=level > previous_level)
            previous_level = level

        st.toast(f"✅ +{event.amount} XP ({event.reason})")


def main():
    """Main application entry point.

    Orchestrates:
    - Session state initialization
    - Sidebar login
    - Tab navigation (Tavern, Rewards, Profile)
    - Reward handling and level-up celebration
    """
    initialize_session_state()

    st.title("🧮 MathQuest")

    try:
        ledger = get_ledger()
        datadog_api_key = get_datadog_api_key()
    except Exception as e:
        st.error("Configuration error. Please contact the administrator.")
        logger.error(f"Failed to load configuration: {e}")
        return

    if not st.session_state.authenticated:
        render_sidebar_login()
        handle_login(ledger, datadog_api_key)

        st.info("👈 Enter your student ID in the sidebar to begin your quest!")
        return

    tracker = st.session_state.tracker

    st.sidebar.success(f"Logged in as: **{st.session_state.student_name or st.session_state.student_id}**")
    st.sidebar.metric("XP", f"{st.session_state.xp}")
    st.sidebar.metric("Level", st.session_state.level)
    st.sidebar.metric("Streak", f"{st.session_state.streak_days} days")

    if st.sidebar.button("Logout"):
        tracker.close()
        for key in list(st.session_state.keys()):
            del st.session_state[key]
        st.rerun()

    tabs = st.tabs(["🏰 Tavern", "🎁 Rewards", "📜 Profile"])

    with tabs[0]:
        render_tavern()

    with tabs[1]:
        render_reward_board()
        handle_reward_submission(tracker, datadog_api_key)
        render_xp_hud(st.session_state.xp)

    with tabs[2]:
        render_profile({
            "name": st.session_state.student_name,
            "xp": st.session_state.xp,
            "behaviour": st.session_state.behaviour,
            "streak_days": st.session_state.streak_days,
        })

    if st.session_state.pending_level_up:
        st.success(f"🎉 Level up! You reached Level {st.session_state.pending_level_up}!")
        st.balloons()
        st.session_state.pending_level_up = None


if __name__ == "__main__":
    main()
