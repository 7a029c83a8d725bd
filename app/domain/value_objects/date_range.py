"""DateRange value object — immutable inclusive [start, end] due-date window."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("End date must be after start date")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def span(self) -> timedelta:
        return self.end - self.start
