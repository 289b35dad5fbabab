"""
Form components for studylog.
"""

from .fields import FormField, TextAreaField, TextInputField, SelectField
from .submit import SubmitButton
from .event_form import EventCreateForm
from .absence_form import AbsenceRequestForm
from .profile_form import ProfileEditForm

__all__ = [
    "FormField",
    "TextAreaField",
    "TextInputField",
    "SelectField",
    "SubmitButton",
    "EventCreateForm",
    "AbsenceRequestForm",
    "ProfileEditForm",
]
