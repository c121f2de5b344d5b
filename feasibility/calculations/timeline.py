"""
Period Grid

The discrete monthly timeline every row in the engine is indexed by.
"""

from dataclasses import dataclass
from datetime import date
from typing import List

from dateutil.relativedelta import relativedelta

from feasibility.calculations.inputs import Timeline


@dataclass(frozen=True)
class PeriodGrid:
    """Immutable monthly grid of periods 0..N-1."""

    periods: int
    start_date: date

    @classmethod
    def from_timeline(cls, timeline: Timeline) -> "PeriodGrid":
        return cls(periods=timeline.periods, start_date=timeline.start_date)

    @property
    def indices(self) -> range:
        return range(self.periods)

    @property
    def last(self) -> int:
        return self.periods - 1

    def date_of(self, period: int) -> date:
        """Calendar date of the start of a period."""
        return self.start_date + relativedelta(months=period)

    def dates(self) -> List[date]:
        return [self.date_of(t) for t in self.indices]

