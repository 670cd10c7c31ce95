"""Contextual XP rewards for MathQuest.

Maps gameplay events (quests, puzzles, logins, streaks, performance) to XP
grants with a reason and an awarding system, so every grant lands in the
ledger's audit trail with context.
"""

from mathquest.levels import round_half_up
from mathquest.tracker import ProgressTracker, XPGrantEvent


# Base XP values per reward type
REWARDS = {
    "quest_completion": 100,
    "puzzle_solved": 50,
    "boss_defeated": 150,
    "daily_login": 25,
    "streak_bonus": 10,  # per streak day
    "first_completion": 75,
    "perfect_score": 100,
    "helpful_action": 15,
    "puzzle_reward": 25,  # flat reward for a puzzle-locked interactable
}

# XP per speed category; anything else earns the default
SPEED_REWARDS = {
    "fast": 30,
    "very-fast": 50,
}
DEFAULT_SPEED_REWARD = 20


class XPRewardSystem:
    """Awards XP for gameplay events through a ProgressTracker.

    Args:
        tracker: The session's progress tracker
        rewards: Optional overrides for the REWARDS base values
    """

    def __init__(self, tracker: ProgressTracker, rewards: dict | None = None):
        self.tracker = tracker
        self.rewards = {**REWARDS, **(rewards or {})}

    def _award(self, amount: int, reason: str, source: str) -> XPGrantEvent | None:
        return self.tracker.grant_xp(amount, reason, source=source)

    # Quest-related rewards
    def reward_quest_completion(self, quest_name: str) -> XPGrantEvent | None:
        return self._award(self.rewards["quest_completion"], f"Completed quest: {quest_name}", "QuestSystem")

    def reward_puzzle_solved(self, puzzle_name: str, difficulty: int = 1) -> XPGrantEvent | None:
        xp = self.rewards["puzzle_solved"] * difficulty
        return self._award(xp, f"Solved {puzzle_name} puzzle", "PuzzleSystem")

    def reward_puzzle_unlock(self, puzzle_name: str) -> XPGrantEvent | None:
        """Flat reward granted when a puzzle-locked chest or door opens."""
        return self._award(self.rewards["puzzle_reward"], f"Solved puzzle: {puzzle_name}", "PuzzleSystem")

    def reward_boss_defeated(self, boss_name: str) -> XPGrantEvent | None:
        return self._award(self.rewards["boss_defeated"], f"Defeated {boss_name}", "BossSystem")

    # Daily rewards
    def reward_daily_login(self) -> XPGrantEvent | None:
        return self._award(self.rewards["daily_login"], "Daily login bonus", "LoginSystem")

    def reward_streak(self, streak_days: int) -> XPGrantEvent | None:
        xp = self.rewards["streak_bonus"] * streak_days
        return self._award(xp, f"{streak_days}-day streak bonus!", "StreakSystem")

    # Achievement-based rewards
    def reward_first_completion(self, achievement_name: str) -> XPGrantEvent | None:
        return self._award(self.rewards["first_completion"], f"First time: {achievement_name}", "AchievementSystem")

    def reward_perfect_score(self, activity_name: str) -> XPGrantEvent | None:
        return self._award(self.rewards["perfect_score"], f"Perfect score on {activity_name}!", "PerformanceSystem")

    # Social/helpful actions
    def reward_helpful_action(self, action: str) -> XPGrantEvent | None:
        return self._award(self.rewards["helpful_action"], action, "SocialSystem")

    # Performance-based
    def reward_accuracy(self, accuracy_percent: int, activity_name: str) -> XPGrantEvent | None:
        """Up to 50 XP for 100% accuracy; nothing when it rounds to 0."""
        xp = round_half_up(accuracy_percent * 0.5)
        if xp <= 0:
            return None
        return self._award(xp, f"{accuracy_percent}% accuracy on {activity_name}", "PerformanceSystem")

    def reward_speed(self, activity_name: str, speed_category: str) -> XPGrantEvent | None:
        xp = SPEED_REWARDS.get(speed_category, DEFAULT_SPEED_REWARD)
        return self._award(xp, f"Quick completion: {activity_name}", "SpeedSystem")

    # Custom rewards
    def reward_custom(self, xp_amount: int, reason: str, source: str = "GameSystem") -> XPGrantEvent | None:
        return self._award(xp_amount, reason, source)
