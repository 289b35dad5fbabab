"""
Base class for the studylog UI components.

Pages are assembled from small Python classes that return HTML strings; no
template engine is involved, so escaping happens explicitly via `escape`.
"""

from typing import Optional, Any
import html


class Component:
    """Base class for all UI components.

    Subclasses implement `render()` and use the static helpers to escape user
    data and build class/attribute strings.
    """

    def render(self) -> str:
        raise NotImplementedError("Subclasses must implement render()")

    @staticmethod
    def escape(text: Optional[Any]) -> str:
        """Escape HTML entities; None renders as an empty string."""
        return html.escape(str(text)) if text is not None else ""

    @staticmethod
    def classes(*args: str, **conditionals: bool) -> str:
        """Build a class string from fixed classes and conditional flags.

        Example:
            >>> Component.classes("tab", active=True, disabled=False)
            'tab active'
        """
        classes = [c for c in args if c]
        classes.extend(key.replace("_", "-") for key, value in conditionals.items() if value)
        return " ".join(classes)

    @staticmethod
    def attributes(**attrs: Any) -> str:
        """Build HTML attributes from keyword arguments.

        A trailing underscore maps reserved names (`class_` -> `class`), inner
        underscores become hyphens (`hx_post` -> `hx-post`). True renders a
        boolean attribute; False and None are dropped.

        Example:
            >>> Component.attributes(id="day-0", data_day=0, selected=True)
            'id="day-0" data-day="0" selected'
        """
        result = []
        for key, value in attrs.items():
            if key.endswith("_"):
                key = key[:-1]
            else:
                key = key.replace("_", "-")

            if value is True:
                result.append(key)
            elif value is not False and value is not None:
                result.append(f'{key}="{html.escape(str(value))}"')

        return " ".join(result)
