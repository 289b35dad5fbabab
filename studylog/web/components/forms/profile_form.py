"""
Own-profile edit form.

Only name, grade, class and student number are rendered; `role` and
`approved` have no inputs and are ignored server side.
"""
from typing import Optional

from ..base import Component
from .fields import TextInputField
from .submit import SubmitButton

ERROR_MESSAGES = {
    "name_required": "이름을 입력하세요.",
    "name_too_long": "이름은 50자 이하로 입력하세요.",
    "invalid_grade": "기수은(는) 숫자만 입력하세요.",
    "invalid_class_no": "반은(는) 숫자만 입력하세요.",
    "invalid_student_no": "학번은(는) 숫자만 입력하세요.",
    "profile_not_updated": "저장에 실패했습니다. 다시 시도하세요.",
}


def error_message(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return ERROR_MESSAGES.get(code, "값이 올바르지 않습니다.")


class ProfileEditForm(Component):
    def __init__(self, csrf_token: str, values: Optional[dict] = None, error: Optional[str] = None):
        self.csrf_token = csrf_token
        self.values = values or {}
        self.error = error

    def _value(self, key: str) -> str:
        value = self.values.get(key)
        return "" if value is None else str(value)

    def render(self) -> str:
        fields = [
            TextInputField("name", "이름", required=True).render(value=self._value("name"), maxlength="50"),
            TextInputField("grade", "기수").render(value=self._value("grade"), inputmode="numeric"),
            TextInputField("class_no", "반").render(value=self._value("class_no"), inputmode="numeric"),
            TextInputField("student_no", "학번").render(value=self._value("student_no"), inputmode="numeric"),
        ]
        message = error_message(self.error)
        error_html = f'<div class="form-error" role="alert">{self.escape(message)}</div>' if message else ""
        return f"""
        <form method="post" action="/profile/edit" class="profile-form"
              hx-post="/profile/edit" hx-target="#main-content">
            <input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">
            <p class="form-help">기수/반/학번은 숫자로만 입력해야 합니다.</p>
            {''.join(fields)}
            {error_html}
            <div class="form-actions">
                {SubmitButton("저장", busy_label="저장 중...").render()}
                <a class="button button--ghost" href="/profile">취소</a>
            </div>
        </form>
        """
