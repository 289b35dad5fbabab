"""
Study event form (student calendar, selected day).
"""
from typing import Optional

from studylog.records.models import CATEGORIES

from ..base import Component
from .fields import SelectField, TextAreaField, TextInputField
from .submit import SubmitButton


class EventCreateForm(Component):
    """Add form for one study activity on `day`.

    Posts to `/student/events` with the hidden `week`/`day` so the handler can
    re-render the same calendar position. Field names match
    `records.models.validate_event_draft`.
    """

    def __init__(
        self,
        csrf_token: str,
        *,
        day_iso: str,
        week_iso: str,
        day_index: int,
        error: Optional[str] = None,
        values: Optional[dict] = None,
    ):
        self.csrf_token = csrf_token
        self.day_iso = day_iso
        self.week_iso = week_iso
        self.day_index = day_index
        self.error = error
        self.values = values or {}

    def render(self) -> str:
        title = TextInputField("title", "내용", required=True).render(
            value=self.values.get("title", ""),
            placeholder="수학의 정석 1단원 연습문제",
            maxlength="200",
        )
        category = SelectField("category", "카테고리", required=True).render(
            options=[(c, c) for c in CATEGORIES],
            value=self.values.get("category") or CATEGORIES[0],
        )
        minutes = TextInputField("minutes", "시간(분)", required=True, help_text="예시: 30, 60").render(
            value=self.values.get("minutes", ""),
            input_type="number",
            min="1",
            step="1",
            inputmode="numeric",
        )
        description = TextAreaField("description", "설명").render(value=self.values.get("description", ""), rows=3)
        error_html = f'<div class="form-error" role="alert">{self.escape(self.error)}</div>' if self.error else ""

        return f"""
        <form method="post" action="/student/events" class="event-form"
              hx-post="/student/events" hx-target="#main-content">
            <input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">
            <input type="hidden" name="date" value="{self.escape(self.day_iso)}">
            <input type="hidden" name="week" value="{self.escape(self.week_iso)}">
            <input type="hidden" name="day" value="{self.day_index}">
            {title}
            {category}
            {minutes}
            {description}
            {error_html}
            <div class="form-actions">
                {SubmitButton("등록", busy_label="저장 중...").render()}
            </div>
        </form>
        """
