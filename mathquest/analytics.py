"""Analytics module for sending progression metrics to Datadog.

This module implements fail-open analytics integration with Datadog HTTP API:
- XP granted, tagged by awarding system and resulting level
- Level-ups, tagged by the level reached
- Login streak gauge, tagged by behaviour flag

Metric failures are logged but do not block gameplay.
"""

import logging
import time

import requests

logger = logging.getLogger(__name__)

DATADOG_API_URL = "https://api.datadoghq.com/api/v1/series"
METRIC_PREFIX = "mathquest"


def build_series(name: str, value: int, metric_type: str, tags: list[str],
                 timestamp: int | None = None) -> dict:
    """Build one Datadog series entry named ``mathquest.<name>``."""
    return {
        "metric": f"{METRIC_PREFIX}.{name}",
        "type": metric_type,
        "points": [[timestamp if timestamp is not None else int(time.time()), value]],
        "tags": tags,
    }


def submit_series(series: list[dict], datadog_api_key: str) -> bool:
    """Post series to Datadog in a single request.

    Uses fail-open design: logs errors but returns False instead of raising
    exceptions.

    Args:
        series: Entries built with build_series
        datadog_api_key: Datadog API key for authentication

    Returns:
        True if the series were accepted, False otherwise
    """
    names = ", ".join(entry["metric"] for entry in series)

    try:
        headers = {
            "Content-Type": "application/json",
            "DD-API-KEY": datadog_api_key
        }

        response = requests.post(
            DATADOG_API_URL,
            json={"series": series},
            headers=headers,
            timeout=5
        )

        response.raise_for_status()
        logger.info(f"Successfully sent metrics: {names}")
        return True

    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to send Datadog metrics {names}: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error sending Datadog metrics {names}: {e}")
        return False


def send_xp_metric(amount: int, source: str, datadog_api_key: str,
                   level: int | None = None, leveled_up: bool = False) -> bool:
    """Send the metrics for one XP grant.

    Sends a COUNT metric "mathquest.xp_granted" whose point value is the
    granted amount, tagged with the awarding system and, when known, the
    level after the grant. A grant that crossed a level boundary also sends
    "mathquest.level_up" in the same request.

    Args:
        amount: XP granted
        source: The awarding system (QuestSystem, PuzzleSystem, ...)
        datadog_api_key: Datadog API key for authentication
        level: Player level after the grant, optional
        leveled_up: Whether the grant raised the level

    Returns:
        True if metrics were sent successfully, False otherwise

    Example:
        >>> send_xp_metric(50, "PuzzleSystem", "your-api-key", level=3)
        True
    """
    timestamp = int(time.time())

    tags = [f"source:{source}"]
    if level is not None:
        tags.append(f"level:{level}")

    series = [build_series("xp_granted", amount, "count", tags, timestamp)]
    if leveled_up and level is not None:
        series.append(build_series("level_up", 1, "count", [f"level:{level}"], timestamp))

    return submit_series(series, datadog_api_key)


def send_login_metric(streak_days: int, behaviour: str, datadog_api_key: str) -> bool:
    """Send a student's login streak as a GAUGE tagged with their behaviour flag."""
    series = [build_series("login_streak", streak_days, "gauge", [f"behaviour:{behaviour or 'unknown'}"])]
    return submit_series(series, datadog_api_key)
