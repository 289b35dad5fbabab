# studylog component system
# Pure Python components for HTML generation

from .base import Component
from .layout import Layout
from .navigation import Navigation
from .calendar import WeekCalendar
from .forms import (
    FormField,
    TextAreaField,
    TextInputField,
    SelectField,
    SubmitButton,
    EventCreateForm,
    AbsenceRequestForm,
    ProfileEditForm,
)

__all__ = [
    "Component",
    "Layout",
    "Navigation",
    "WeekCalendar",
    "FormField",
    "TextAreaField",
    "TextInputField",
    "SelectField",
    "SubmitButton",
    "EventCreateForm",
    "AbsenceRequestForm",
    "ProfileEditForm",
]
