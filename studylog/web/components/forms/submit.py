from ..base import Component


class SubmitButton(Component):
    """Primary submit button; `busy_label` is shown by htmx while the request runs."""

    def __init__(self, label: str, *, busy_label: str = "", variant: str = "primary") -> None:
        self.label = label
        self.busy_label = busy_label
        self.variant = variant

    def render(self) -> str:
        attrs = self.attributes(
            type="submit",
            class_=f"button button--{self.variant}",
            data_busy_label=self.busy_label or None,
        )
        return f"<button {attrs}>{self.escape(self.label)}</button>"
