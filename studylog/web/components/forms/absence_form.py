from typing import Optional

from ..base import Component
from .fields import TextAreaField, TextInputField
from .submit import SubmitButton


class AbsenceRequestForm(Component):
    """Absence request form: a date and a non-empty reason."""

    def __init__(self, csrf_token: str, error: Optional[str] = None, values: Optional[dict] = None):
        self.csrf_token = csrf_token
        self.error = error
        self.values = values or {}

    def render(self) -> str:
        date_field = TextInputField("date", "날짜", required=True).render(
            value=self.values.get("date", ""), input_type="date"
        )
        reason = TextAreaField("reason", "결석 사유", required=True).render(
            value=self.values.get("reason", ""), rows=4, maxlength="1000"
        )
        error_html = f'<div class="form-error" role="alert">{self.escape(self.error)}</div>' if self.error else ""
        return f"""
        <form method="post" action="/student/absence" class="absence-form"
              hx-post="/student/absence" hx-target="#main-content">
            <input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">
            <p class="form-help">날짜와 사유를 제출하면 선생님이 확인합니다. 수정 및 삭제가 불가능하니, 신중하게 제출하세요.</p>
            {date_field}
            {reason}
            {error_html}
            <div class="form-actions">
                {SubmitButton("제출", busy_label="제출중...").render()}
            </div>
        </form>
        """
