"""Completion prediction: when to look at a match for its final result.

Everything here is a pure function of the kickoff time, the current time and
the policy in ``ResolutionConfig``. Recheck points for one match are::

    E + offsets[0], E + offsets[1], ..., E + offsets[-1],
    then every ``recheck_interval_minutes`` until the hard cutoff,
    with one final point clamped to the cutoff itself

where ``E = kickoff + typical_duration_minutes``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from matchday.config import ResolutionConfig


class CompletionPredictor:
    """Stateless recheck schedule for a single match."""

    def __init__(self, config: ResolutionConfig | None = None):
        self.config = config or ResolutionConfig()

    def expected_completion(self, kickoff: datetime) -> datetime:
        return kickoff + timedelta(minutes=self.config.typical_duration_minutes)

    def cutoff(self, kickoff: datetime) -> datetime:
        """After this, the match is left to manual resolution."""
        return kickoff + timedelta(hours=self.config.hard_cutoff_hours)

    def recheck_points(self, kickoff: datetime) -> list[datetime]:
        """All recheck times for a match, ascending, ending at the cutoff."""
        expected = self.expected_completion(kickoff)
        cutoff = self.cutoff(kickoff)

        points = [
            expected + timedelta(minutes=offset)
            for offset in self.config.recheck_offsets_minutes
        ]
        step = timedelta(minutes=self.config.recheck_interval_minutes)
        point = points[-1] + step
        while point < cutoff:
            points.append(point)
            point += step

        points = [p for p in points if p <= cutoff]
        if not points or points[-1] < cutoff:
            points.append(cutoff)
        return points

    def next_recheck(
        self,
        kickoff: datetime,
        now: datetime,
        last_checked: datetime | None = None,
    ) -> datetime | None:
        """Next time this match should be polled, or None once past the cutoff.

        ``last_checked`` is the time of the latest poll that already covered
        the match. Points that are due but were never polled return ``now``.
        """
        cutoff = self.cutoff(kickoff)
        if now > cutoff:
            return None
        if last_checked is not None and last_checked >= cutoff:
            return None

        for point in self.recheck_points(kickoff):
            if last_checked is None or point > last_checked:
                return max(point, now)
        return None
