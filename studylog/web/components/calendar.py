"""
Week calendar component shared by the student calendar and the teacher's
per-student view.

The component only renders; week clamping, event loading and ownership checks
happen in the route handlers.
"""

from typing import Dict, List, Optional, Sequence
from urllib.parse import urlencode

from studylog.records.models import CATEGORIES, Event
from studylog.records.week import (
    DOW_LABELS,
    WeekWindow,
    format_md,
    format_minutes,
    group_events_by_date,
    minutes_by_category,
    to_iso_date,
)

from .base import Component


class WeekCalendar(Component):
    """Week navigation, day tabs, the selected day's events and weekly totals.

    Args:
        window: Week being shown (navigation limits included)
        day_index: Selected day, 0 (Mon) .. 6 (Sun)
        events: Events of the week
        base_path: Path the navigation links point to
        extra_query: Query parameters kept across navigation (e.g. `order`)
        csrf_token: When set, each event gets a delete button
        today_iso: Marks today's tab
    """

    def __init__(
        self,
        window: WeekWindow,
        day_index: int,
        events: Sequence[Event],
        *,
        base_path: str,
        extra_query: Optional[Dict[str, str]] = None,
        csrf_token: Optional[str] = None,
        today_iso: str = "",
    ) -> None:
        self.window = window
        self.day_index = day_index
        self.events = list(events)
        self.base_path = base_path
        self.extra_query = extra_query or {}
        self.csrf_token = csrf_token
        self.today_iso = today_iso

    def href(self, week_iso: str, day: int) -> str:
        query = dict(self.extra_query)
        query.update({"week": week_iso, "day": str(day)})
        return f"{self.base_path}?{urlencode(query)}"

    @property
    def selected_iso(self) -> str:
        return to_iso_date(self.window.days[self.day_index])

    def render(self) -> str:
        by_day = group_events_by_date(self.events, self.window.days)
        return f"""
        <section class="week-calendar" aria-label="주간 학습">
            {self._render_week_nav()}
            {self._render_day_tabs(by_day)}
            {self._render_day_panel(by_day.get(self.selected_iso, []))}
            {self._render_summary()}
        </section>
        """

    def _nav_link(self, label: str, week_iso: str, enabled: bool) -> str:
        if not enabled:
            return f'<span class="button button--ghost is-disabled" aria-disabled="true">{self.escape(label)}</span>'
        href = self.href(week_iso, self.day_index)
        return (
            f'<a class="button button--ghost" href="{self.escape(href)}" '
            f'hx-get="{self.escape(href)}" hx-target="#main-content" hx-push-url="true">{self.escape(label)}</a>'
        )

    def _render_week_nav(self) -> str:
        this_week = to_iso_date(self.window.this_monday)
        suffix = " (이번 주)" if self.window.is_this_week else ""
        return f"""
            <div class="week-nav">
                {self._nav_link("← 이전 주", self.window.prev_iso, self.window.can_prev)}
                <strong class="week-label">{self.escape(self.window.label)}{suffix}</strong>
                {self._nav_link("다음 주 →", self.window.next_iso, self.window.can_next)}
                {self._nav_link("이번 주", this_week, not self.window.is_this_week)}
            </div>"""

    def _render_day_tabs(self, by_day) -> str:
        tabs: List[str] = []
        for i, day in enumerate(self.window.days):
            iso = to_iso_date(day)
            minutes = sum(e.duration_min for e in by_day.get(iso, []))
            href = self.href(self.window.start_iso, i)
            attrs = self.attributes(
                href=href,
                hx_get=href,
                hx_target="#main-content",
                hx_push_url="true",
                class_=self.classes("day-tab", active=(i == self.day_index), today=(iso == self.today_iso)),
                aria_current="date" if i == self.day_index else None,
            )
            count = f'<span class="day-tab__minutes">{self.escape(format_minutes(minutes))}</span>' if minutes else ""
            tabs.append(
                f"<a {attrs}><span class=\"day-tab__dow\">{DOW_LABELS[i]}</span>"
                f"<span class=\"day-tab__date\">{format_md(day)}</span>{count}</a>"
            )
        return f'<nav class="day-tabs" aria-label="요일">{"".join(tabs)}</nav>'

    def _render_day_panel(self, events: List[Event]) -> str:
        day = self.window.days[self.day_index]
        heading = f"{format_md(day)} ({DOW_LABELS[self.day_index]})"
        if not events:
            items = '<p class="text-muted">이 날에는 등록된 학습이 없습니다</p>'
        else:
            items = '<ul class="event-list">' + "".join(self._render_event(e) for e in events) + "</ul>"
        return f"""
            <div class="day-panel">
                <h2>{self.escape(heading)}</h2>
                {items}
            </div>"""

    def _render_event(self, event: Event) -> str:
        description = (
            f'<p class="event-item__description">{self.escape(event.description)}</p>' if event.description else ""
        )
        delete_html = ""
        if self.csrf_token:
            delete_html = f"""
                    <form method="post" action="/student/events/{self.escape(event.id)}/delete" class="inline-form"
                          hx-post="/student/events/{self.escape(event.id)}/delete" hx-target="#main-content"
                          hx-confirm="이 항목을 삭제하겠습니까?">
                        <input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">
                        <input type="hidden" name="week" value="{self.escape(self.window.start_iso)}">
                        <input type="hidden" name="day" value="{self.day_index}">
                        <button type="submit" class="button button--danger button--small">삭제</button>
                    </form>"""
        return f"""
                <li class="event-item">
                    <div class="event-item__head">
                        <span class="badge">{self.escape(event.category)}</span>
                        <strong>{self.escape(event.title)}</strong>
                        <span class="event-item__minutes">{self.escape(format_minutes(event.duration_min))}</span>
                    </div>
                    {description}{delete_html}
                </li>"""

    def _render_summary(self) -> str:
        totals = minutes_by_category(self.events)
        rows = "".join(
            f"<tr><th scope=\"row\">{self.escape(c)}</th><td>{self.escape(format_minutes(totals[c]))}</td></tr>"
            for c in CATEGORIES
        )
        total = sum(totals.values())
        return f"""
            <div class="week-summary">
                <h2>주간 시간 집계</h2>
                <table class="table table--compact">
                    <tbody>
                        {rows}
                        <tr class="table-total"><th scope="row">총 합</th><td>{self.escape(format_minutes(total))}</td></tr>
                    </tbody>
                </table>
            </div>"""
