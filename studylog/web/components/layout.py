"""
Layout component: wraps page content into the full HTML document.
"""

from typing import Any, Dict, Optional

from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Main layout that assembles head, navigation and content."""

    def __init__(
        self,
        title: str,
        content: str,
        user: Optional[Dict[str, Any]] = None,
        show_nav: bool = True,
        current_path: str = "/",
        csrf_token: str = "",
    ):
        """
        Args:
            title: Page title (escaped)
            content: Main content HTML (pre-rendered components)
            user: Current user view from the request state (optional)
            show_nav: Whether to show the role navigation
            current_path: Current URL path for active tab highlighting
            csrf_token: Per-session token embedded for forms and page scripts
        """
        self.title = title
        self.content = content
        self.user = user
        self.show_nav = show_nav
        self.current_path = current_path
        self.csrf_token = csrf_token

    def _navigation(self) -> Navigation:
        return Navigation(self.user, self.current_path, csrf_token=self.csrf_token)

    def render(self) -> str:
        nav_html = self._navigation().render() if self.show_nav else ""
        return f"""<!DOCTYPE html>
<html lang="ko">
<head>
    {self._render_head()}
</head>
<body data-refresh-url="/api/me/refresh">
    <a href="#main-content" class="skip-link">본문으로 건너뛰기</a>

    {nav_html}

    <div id="loading-indicator" class="loading-indicator htmx-indicator" role="status" aria-live="polite">불러오는 중…</div>

    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def render_fragment(self) -> str:
        """Return the HTMX fragment: main content plus an out-of-band header.

        The header is swapped out-of-band so the active tab and the user block
        follow HTMX navigation without a full page load.
        """
        main_inner = self._render_main_inner()
        if not self.show_nav:
            return main_inner
        return f"{main_inner}{self._navigation().render_header(oob=True)}"

    def _render_head(self) -> str:
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="csrf-token" content="{self.escape(self.csrf_token)}">

    <title>{self.escape(self.title)} - studylog</title>

    <link rel="stylesheet" href="/static/css/studylog.css?v=1">

    <!-- HTMX (local copy) -->
    <script src="/static/js/vendor/htmx.min.js"></script>
    <script src="/static/js/studylog.js?v=1" defer></script>
    """

    def _render_main_inner(self) -> str:
        """Children of <main> only, so HTMX swaps never nest <main> elements."""
        return f"""
        {self.content}
        """
