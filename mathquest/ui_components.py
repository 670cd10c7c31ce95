"""UI components module for MathQuest.

This module provides Streamlit UI rendering functions for all application views:
- XP HUD with level, progress bar, and XP caption
- Profile display with XP, level, login streak, and behaviour flag
- Tavern information hub explaining the leveling curve
- Reward board for awarding XP
- Sidebar login form

It also provides StreamlitProgressDisplay, the ProgressObserver that keeps
session state in sync with the tracker.
"""

import streamlit as st

from mathquest.levels import (
    BASE_XP,
    MAX_LEVEL,
    format_level_label,
    format_xp_label,
    progress_snapshot,
    xp_for_next_level,
)


class StreamlitProgressDisplay:
    """ProgressObserver that mirrors XP state into st.session_state.

    Level-ups are queued under ``pending_level_up`` so the next render can
    celebrate them once.
    """

    def on_xp_changed(self, new_total_xp: int) -> None:
        snapshot = progress_snapshot(new_total_xp)
        st.session_state.xp = snapshot.total_xp
        st.session_state.level = snapshot.level

    def on_level_up(self, new_level: int) -> None:
        st.session_state.pending_level_up = new_level


def render_xp_hud(total_xp: int) -> None:
    """Render the XP HUD: level label, progress bar, and XP caption.

    Args:
        total_xp: Player's total XP

    Returns:
        None (renders UI directly via Streamlit)
    """
    snapshot = progress_snapshot(total_xp)

    st.subheader(format_level_label(snapshot.level))
    st.progress(snapshot.percentage, text=format_xp_label(snapshot))

    if snapshot.is_max_level:
        st.caption("🏆 Maximum level reached!")
    else:
        st.caption(f"{snapshot.xp_to_next_level} XP to {format_level_label(snapshot.level + 1)}")


def render_profile(profile: dict) -> None:
    """Render profile tab displaying the student's progress.

    Args:
        profile: Profile dict containing:
            - name: str
            - xp: int
            - behaviour: str | None
            - streak_days: int, optional

    Returns:
        None (renders UI directly via Streamlit)
    """
    st.header("⚔️ Character Sheet")

    st.subheader(f"Student: {profile.get('name') or 'Unknown'}")

    snapshot = progress_snapshot(profile.get('xp', 0))

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Experience Points", f"{snapshot.total_xp} XP")
    with col2:
        st.metric("Level", snapshot.level)
    with col3:
        st.metric("Next Level In", "MAX" if snapshot.is_max_level else f"{snapshot.xp_to_next_level} XP")

    st.divider()

    render_xp_hud(snapshot.total_xp)

    streak_days = profile.get('streak_days', 0)
    if streak_days:
        st.caption(f"🔥 Login streak: {streak_days} day{'' if streak_days == 1 else 's'}")

    behaviour = profile.get('behaviour')
    if behaviour:
        st.info(f"📋 Teacher status: {behaviour}")


def render_tavern() -> None:
    """Render tavern tab explaining how XP and levels work.

    Returns:
        None (renders UI directly via Streamlit)
    """
    st.header("🏰 The Tavern")

    st.markdown("""
    Welcome, brave mathematician! Solve puzzles, open chests, and complete
    quests to earn **experience points** and climb the ranks.
    """)

    st.divider()

    st.subheader("✨ XP & Leveling System")
    st.markdown(f"""
    **Leveling:**
    - Everyone starts at **Level 1**
    - Reaching Level 2 takes **{BASE_XP} XP**
    - Each level after that needs **1.5×** the XP of the one before
    - The highest level is **{MAX_LEVEL}**
    """)

    rows = [
        {"Level": level, "XP to next level": xp_for_next_level(level)}
        for level in range(1, 11)
    ]
    st.table(rows)

    st.success("🎯 Ready? Head to the Rewards tab to start earning XP!")


def render_reward_board() -> None:
    """Render buttons for awarding XP.

    Stores the chosen action in session state for processing by main app.

    Returns:
        None (renders UI directly via Streamlit)
    """
    st.header("🎁 Rewards")

    with st.form(key="puzzle_form"):
        puzzle_name = st.text_input("Puzzle name:", value="Fractions", max_chars=60)
        difficulty = st.number_input("Difficulty:", min_value=1, max_value=5, value=1, step=1)
        if st.form_submit_button("🧮 Puzzle Solved"):
            st.session_state["reward_submission"] = {
                "kind": "puzzle",
                "name": puzzle_name,
                "difficulty": int(difficulty),
            }

    with st.form(key="quest_form"):
        quest_name = st.text_input("Quest name:", value="The Lost Chest", max_chars=60)
        if st.form_submit_button("📜 Quest Completed"):
            st.session_state["reward_submission"] = {"kind": "quest", "name": quest_name}

    if st.button("☀️ Daily Login Bonus"):
        st.session_state["reward_submission"] = {"kind": "daily_login"}


def render_sidebar_login() -> None:
    """Render login form in sidebar.

    Stores the student id in session state for processing by main app.

    Returns:
        None (renders UI directly via Streamlit)
    """
    st.sidebar.header("🎮 Student Login")

    with st.sidebar.form(key="login_form"):
        student_id = st.text_input(
            "Student ID:",
            max_chars=64,
            key="login_student_id_input"
        )

        if st.form_submit_button("Start Session"):
            st.session_state["login_submission"] = {"student_id": student_id}
