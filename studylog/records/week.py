"""
Week arithmetic and weekly aggregation.

Weeks start on Monday. Dates are local calendar dates (`datetime.date`) and
travel as ISO strings (`YYYY-MM-DD`) in query parameters and table rows.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import BASIC, CAREER, CATEGORIES, Event

DOW_LABELS = ("월", "화", "수", "목", "금", "토", "일")

# Students may browse one week back and three weeks ahead of the current week.
WEEK_LIMIT_PREV_DAYS = -7
WEEK_LIMIT_NEXT_DAYS = 21


def start_of_week_monday(base: date) -> date:
    return base - timedelta(days=base.weekday())


def add_days(base: date, days: int) -> date:
    return base + timedelta(days=days)


def to_iso_date(value: date) -> str:
    return value.isoformat()


def format_md(value: date) -> str:
    return f"{value.month}/{value.day}"


def format_week_range(monday: date) -> str:
    return f"{format_md(monday)} ~ {format_md(add_days(monday, 6))}"


def format_minutes(total_minutes: Optional[int]) -> str:
    """Minutes as "n시간 m분" (drops the zero part)."""
    minutes = max(0, int(total_minutes or 0))
    hours, rest = divmod(minutes, 60)
    if hours <= 0:
        return f"{rest}분"
    if rest == 0:
        return f"{hours}시간"
    return f"{hours}시간 {rest}분"


def format_decimal_hours(total_minutes: Optional[int]) -> str:
    hours = (total_minutes or 0) / 60
    text = f"{hours:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text}시간"


def parse_week_param(raw: Optional[str], today: date) -> date:
    """Monday of the week containing `raw`; invalid input means this week."""
    if raw:
        try:
            return start_of_week_monday(date.fromisoformat(raw.strip()))
        except ValueError:
            pass
    return start_of_week_monday(today)


def parse_day_param(raw: Optional[str], default: int = 0) -> int:
    """Day index within the week, clamped to 0 (Mon) .. 6 (Sun)."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return min(max(value, 0), 6)


def today_index(today: date) -> int:
    return today.weekday()


@dataclass(frozen=True)
class WeekWindow:
    monday: date
    this_monday: date
    min_monday: Optional[date] = None
    max_monday: Optional[date] = None

    @property
    def days(self) -> List[date]:
        return [add_days(self.monday, i) for i in range(7)]

    @property
    def start_iso(self) -> str:
        return to_iso_date(self.monday)

    @property
    def end_iso(self) -> str:
        return to_iso_date(add_days(self.monday, 6))

    @property
    def is_this_week(self) -> bool:
        return self.monday == self.this_monday

    @property
    def can_prev(self) -> bool:
        return self.min_monday is None or self.monday > self.min_monday

    @property
    def can_next(self) -> bool:
        return self.max_monday is None or self.monday < self.max_monday

    @property
    def prev_iso(self) -> str:
        return to_iso_date(add_days(self.monday, -7))

    @property
    def next_iso(self) -> str:
        return to_iso_date(add_days(self.monday, 7))

    @property
    def label(self) -> str:
        return format_week_range(self.monday)


def bounded_week(raw: Optional[str], today: date) -> WeekWindow:
    """Student week view: requested week clamped to the navigation window."""
    this_monday = start_of_week_monday(today)
    lo = add_days(this_monday, WEEK_LIMIT_PREV_DAYS)
    hi = add_days(this_monday, WEEK_LIMIT_NEXT_DAYS)
    monday = min(max(parse_week_param(raw, today), lo), hi)
    return WeekWindow(monday=monday, this_monday=this_monday, min_monday=lo, max_monday=hi)


def open_week(raw: Optional[str], today: date) -> WeekWindow:
    """Teacher week view: any week may be browsed."""
    return WeekWindow(monday=parse_week_param(raw, today), this_monday=start_of_week_monday(today))


def group_events_by_date(events: Iterable[Event], days: Sequence[date]) -> "OrderedDict[str, List[Event]]":
    """Bucket events per ISO day of the week; events outside the week are dropped."""
    buckets: "OrderedDict[str, List[Event]]" = OrderedDict((to_iso_date(d), []) for d in days)
    for event in events:
        bucket = buckets.get(event.date)
        if bucket is not None:
            bucket.append(event)
    return buckets


def minutes_by_category(events: Iterable[Event]) -> Dict[str, int]:
    totals = {category: 0 for category in CATEGORIES}
    for event in events:
        if event.category in totals:
            totals[event.category] += max(0, event.duration_min or 0)
    return totals


# --- Weekly audit ---------------------------------------------------------------

SORT_TOTAL = "total"
SORT_BASIC = "basic"
SORT_CAREER = "career"
WEEKLY_SORTS = (SORT_TOTAL, SORT_BASIC, SORT_CAREER)


@dataclass(frozen=True)
class WeeklyRow:
    student_id: str
    name: Optional[str]
    grade: Optional[int]
    class_no: Optional[int]
    student_no: Optional[int]
    basic: int = 0
    career: int = 0

    @property
    def total(self) -> int:
        return self.basic + self.career


def weekly_rows(students: Iterable, events: Iterable[Mapping]) -> List[WeeklyRow]:
    """Per-student minutes for one week. `events` are rows with owner/category/minutes."""
    basic: Dict[str, int] = {}
    career: Dict[str, int] = {}
    for ev in events:
        owner = str(ev.get("owner_id") or "")
        try:
            minutes = max(0, int(ev.get("duration_min") or 0))
        except (TypeError, ValueError):
            minutes = 0
        category = ev.get("category")
        if category == BASIC:
            basic[owner] = basic.get(owner, 0) + minutes
        elif category == CAREER:
            career[owner] = career.get(owner, 0) + minutes
    return [
        WeeklyRow(
            student_id=s.id,
            name=s.name,
            grade=s.grade,
            class_no=s.class_no,
            student_no=s.student_no,
            basic=basic.get(s.id, 0),
            career=career.get(s.id, 0),
        )
        for s in students
    ]


def sort_weekly_rows(rows: Iterable[WeeklyRow], sort_key: str = SORT_TOTAL, asc: bool = False) -> List[WeeklyRow]:
    """Sort by minutes; ties always break by class, student number, then name (ascending)."""
    attr = sort_key if sort_key in WEEKLY_SORTS else SORT_TOTAL
    tie_sorted = sorted(
        rows,
        key=lambda r: (
            r.class_no if r.class_no is not None else 9999,
            r.student_no if r.student_no is not None else 999999,
            r.name or "",
        ),
    )
    # Stable sort keeps the tie-break order within equal minutes.
    return sorted(tie_sorted, key=lambda r: getattr(r, attr), reverse=not asc)
