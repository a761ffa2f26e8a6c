"""Deterministic standings and promotion/relegation zones.

Members are ranked by session points DESC, then by enrollment time ASC
(earlier wins), then by membership id ASC. The last key is unique, so the
ordering is a strict total order.
"""

from __future__ import annotations

from datetime import datetime

from recycleit.db.models import League, MembershipOutcome
from recycleit.exceptions import ConfigurationError
from recycleit.league.schemas import StandingEntry


def standing_sort_key(entry: StandingEntry) -> tuple[int, datetime, int]:
    return (-entry.points, entry.enrolled_at, entry.membership_id)


def rank_members(entries: list[StandingEntry]) -> list[StandingEntry]:
    """Sort entries and assign contiguous 1-indexed ranks."""
    ranked = sorted(entries, key=standing_sort_key)
    for idx, entry in enumerate(ranked):
        entry.rank = idx + 1
    return ranked


def outranks(a: StandingEntry, b: StandingEntry) -> bool:
    """True if ``a`` is placed above ``b``."""
    return standing_sort_key(a) < standing_sort_key(b)


def effective_counts(league: League) -> tuple[int, int]:
    """(promoted, relegated) counts with disabled movements zeroed."""
    promoted = league.promoted_count if league.promotion_enabled else 0
    relegated = league.relegated_count if league.relegation_enabled else 0
    return promoted, relegated


def check_capacity(league: League, member_count: int) -> None:
    """Raise ConfigurationError when the movement zones overlap the membership."""
    promoted, relegated = effective_counts(league)
    if promoted + relegated > member_count:
        raise ConfigurationError(
            f"League tier {league.tier}: promoted ({promoted}) + relegated ({relegated}) "
            f"exceeds {member_count} members"
        )


def assign_outcomes(member_count: int, promoted: int, relegated: int) -> list[MembershipOutcome]:
    """Outcome per rank position (index 0 = rank 1).

    Top ``promoted`` are promoted, bottom ``relegated`` are relegated, the
    rest stay. Callers pass 0 for a movement with no adjacent league.
    """
    if promoted < 0 or relegated < 0:
        raise ConfigurationError("Promotion and relegation counts must be non-negative")
    if promoted + relegated > member_count:
        raise ConfigurationError(
            f"promoted ({promoted}) + relegated ({relegated}) exceeds {member_count} members"
        )
    outcomes = []
    for idx in range(member_count):
        if idx < promoted:
            outcomes.append(MembershipOutcome.PROMOTED)
        elif idx >= member_count - relegated:
            outcomes.append(MembershipOutcome.RELEGATED)
        else:
            outcomes.append(MembershipOutcome.STAYED)
    return outcomes
