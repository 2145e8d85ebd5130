from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from ...errors import ValidationError
from .constants import GRADE_BANDS, GradeBand


@dataclass(frozen=True)
class GradeRange:
    grade: str
    label: str
    min_points: int
    max_points: int

    @property
    def display(self) -> str:
        if self.min_points == self.max_points:
            return str(self.min_points)
        return f"{self.min_points}-{self.max_points}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grade": self.grade,
            "label": self.label,
            "minPoints": self.min_points,
            "maxPoints": self.max_points,
            "display": self.display,
        }


@dataclass(frozen=True)
class GradingScale:
    total_points: int
    ranges: Tuple[GradeRange, ...]

    def for_grade(self, grade: str) -> GradeRange:
        for entry in self.ranges:
            if entry.grade == grade:
                return entry
        raise KeyError(grade)

    def rows(self) -> List[Tuple[str, str]]:
        return [(entry.grade, entry.display) for entry in self.ranges]

    def to_dict(self) -> Dict[str, Any]:
        return {"totalPoints": self.total_points, "ranges": [r.to_dict() for r in self.ranges]}


def _ceil_percent(percent: int, total: int) -> int:
    return -(-(percent * total) // 100)


def _floor_percent(percent: int, total: int) -> int:
    return (percent * total) // 100


def calculate_grading_scale(total_points: int, bands: Sequence[GradeBand] = GRADE_BANDS) -> GradingScale:
    """Map each grade band to a point range for a test with `total_points`.

    min = ceil(min% * total), max = floor(max% * total), in integer
    arithmetic. Each band stands alone: rounding can leave gaps or overlaps
    between neighbours and they are printed as computed.
    """
    if isinstance(total_points, bool) or not isinstance(total_points, int) or total_points <= 0:
        raise ValidationError(f"total points must be a positive integer, got {total_points!r}")
    ranges = tuple(
        GradeRange(
            grade=band.grade,
            label=band.label,
            min_points=_ceil_percent(band.min_percent, total_points),
            max_points=_floor_percent(band.max_percent, total_points),
        )
        for band in bands
    )
    return GradingScale(total_points=total_points, ranges=ranges)
