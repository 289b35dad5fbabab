"""
Role-based top navigation.

Teachers and students see different tab sets; pending or anonymous users only
see the brand and (when signed in) the logout control. Links use HTMX boosted
navigation with a plain `href` fallback.
"""

from typing import Any, Dict, List, Optional, Tuple

from .base import Component

NavItem = Tuple[str, str]

NAV_ITEMS: Dict[str, List[NavItem]] = {
    "student": [
        ("/student/calendar", "캘린더"),
        ("/student/absence", "결석"),
        ("/profile", "내 정보"),
    ],
    "teacher": [
        ("/teacher", "대시보드"),
        ("/teacher/students", "학생 관리"),
        ("/teacher/teachers", "선생님 목록"),
        ("/teacher/absences", "결석"),
        ("/teacher/calendar", "캘린더"),
        ("/teacher/weekly", "주간 학습"),
        ("/profile", "내 정보"),
    ],
}

ROLE_LABELS = {"teacher": "선생님", "student": "학생"}


class Navigation(Component):
    def __init__(self, user: Optional[Dict[str, Any]] = None, current_path: str = "/", csrf_token: str = ""):
        """
        Args:
            user: Dict with `name`, `role` and `approved` (None when signed out)
            current_path: Path used for active tab highlighting
            csrf_token: Token for the logout form
        """
        self.user = user
        self.current_path = current_path or "/"
        self.csrf_token = csrf_token

    def items(self) -> List[NavItem]:
        if not self.user or not self.user.get("approved"):
            return []
        return NAV_ITEMS.get(str(self.user.get("role") or "").lower(), [])

    def active_href(self, items: List[NavItem]) -> Optional[str]:
        """Pick the single active href via best prefix match."""
        best: Optional[str] = None
        for href, _label in items:
            if self.current_path == href:
                return href
            if self.current_path.startswith(href + "/") and (best is None or len(href) > len(best)):
                best = href
        return best

    def render(self) -> str:
        return self.render_header(oob=False)

    def render_header(self, oob: bool = False) -> str:
        items = self.items()
        active = self.active_href(items)
        links = "".join(self._link(href, label, href == active) for href, label in items)
        oob_attr = ' hx-swap-oob="true"' if oob else ""
        tabs = f'<nav class="nav-tabs" aria-label="주 메뉴">{links}</nav>' if links else ""
        return f"""
    <header class="site-header" id="site-header"{oob_attr}>
        <div class="site-header__bar">
            <span class="site-title">studylog</span>
            {self._render_user()}
        </div>
        {tabs}
    </header>"""

    def _render_user(self) -> str:
        if not self.user:
            return ""
        role = ROLE_LABELS.get(str(self.user.get("role") or "").lower(), "사용자")
        name = self.user.get("name") or role
        return f"""
            <div class="user-info">
                <span class="user-name">{self.escape(name)}</span>
                <span class="user-role">{self.escape(role)}</span>
                {self.render_logout()}
            </div>"""

    def render_logout(self) -> str:
        # Full page POST: logout ends the server session and clears the cookie.
        return f"""
                <form method="post" action="/auth/logout" class="logout-form">
                    <input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">
                    <button type="submit" class="button button--ghost">로그아웃</button>
                </form>"""

    def _link(self, href: str, label: str, is_active: bool) -> str:
        attrs = self.attributes(
            href=href,
            hx_get=href,
            hx_target="#main-content",
            hx_push_url="true",
            class_=self.classes("nav-tab", active=is_active),
            aria_current="page" if is_active else None,
        )
        return f"<a {attrs}>{self.escape(label)}</a>"
