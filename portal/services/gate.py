"""Cookie-based access gate guarding the public pages."""

from __future__ import annotations

import html
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional

from .events import emit_gate_event


LOGGER = logging.getLogger(__name__)

KEY_GENERATION_PATH = "/key-generation"
VERIFIED_COOKIE = "verified"
ADS_COOKIE = "ads"
FLAG_VALUE = "true"
AD_PANEL_ID = "ads-container"
LOADING_TEXT = "Checking access..."


class AccessState(str, Enum):
    LOADING = "loading"
    VERIFIED = "verified"
    ADS = "ads"
    DENIED = "denied"


def parse_cookie_header(header: Optional[str]) -> Dict[str, Optional[str]]:
    """Split a raw ``Cookie`` header into a mapping.

    Each ``;`` separated segment is trimmed and split on ``=``. The value is
    the text between the first and second ``=``, a segment without ``=`` maps
    to ``None`` and later duplicates replace earlier ones. Never raises.
    """

    cookies: Dict[str, Optional[str]] = {}
    if not header:
        return cookies
    for segment in str(header).split(";"):
        parts = segment.strip().split("=")
        key = parts[0]
        cookies[key] = parts[1] if len(parts) > 1 else None
    return cookies


def evaluate_access(cookies: Dict[str, Optional[str]]) -> AccessState:
    if cookies.get(VERIFIED_COOKIE) == FLAG_VALUE:
        return AccessState.VERIFIED
    if cookies.get(ADS_COOKIE) == FLAG_VALUE:
        return AccessState.ADS
    return AccessState.DENIED


def format_duration_label(seconds: int) -> str:
    """Return a human label such as ``"1 hours"`` for *seconds*."""

    seconds = int(seconds)
    if seconds < 3600:
        return f"{seconds // 60} minutes"
    if seconds < 86400:
        return f"{seconds // 3600} hours"
    return f"{seconds // 86400} days"


def build_flag_cookie(name: str, max_age: int) -> str:
    return f"{name}={FLAG_VALUE}; Max-Age={int(max_age)}; Path=/"


class DocumentHead:
    """Script elements attached to a rendered document.

    Each source is reference counted so repeated acquisition never produces a
    second element, and the element disappears with its last holder.
    """

    def __init__(self) -> None:
        self._scripts: Dict[str, int] = {}

    def inject_script(self, src: str) -> None:
        count = self._scripts.get(src, 0)
        self._scripts[src] = count + 1
        if count == 0:
            LOGGER.debug("Injected script element %s", src)

    def release_script(self, src: str) -> None:
        count = self._scripts.get(src, 0)
        if count <= 1:
            if self._scripts.pop(src, None) is not None:
                LOGGER.debug("Removed script element %s", src)
            return
        self._scripts[src] = count - 1

    @property
    def scripts(self) -> List[str]:
        return list(self._scripts)

    def render(self) -> str:
        return "\n".join(
            f'<script src="{html.escape(src, quote=True)}" async></script>'
            for src in self._scripts
        )


def render_loading_placeholder() -> str:
    return (
        '<div class="gate-loading" role="status">'
        '<div class="spinner"></div>'
        f"<p>{LOADING_TEXT}</p>"
        "</div>"
    )


def render_ad_panel() -> str:
    return (
        f'<div id="{AD_PANEL_ID}" class="ad-panel">'
        "<p>Advertisement</p>"
        "</div>"
    )


class RouteGuard:
    """Decide once per mount whether a protected page may render."""

    def __init__(
        self,
        cookie_header: Optional[str],
        *,
        navigate: Callable[[str], None],
        document: Optional[DocumentHead] = None,
        ad_script_url: str,
        path: str = "/",
    ) -> None:
        self._cookie_header = cookie_header
        self._navigate = navigate
        self._document = document if document is not None else DocumentHead()
        self._ad_script_url = ad_script_url
        self._path = path
        self._state = AccessState.LOADING
        self._mounted = False
        self._script_held = False

    @property
    def state(self) -> AccessState:
        return self._state

    @property
    def document(self) -> DocumentHead:
        return self._document

    def mount(self) -> AccessState:
        if self._mounted:
            return self._state
        self._mounted = True
        self._state = evaluate_access(parse_cookie_header(self._cookie_header))
        emit_gate_event(self._state.value, path=self._path)
        if self._state is AccessState.DENIED:
            self._navigate(KEY_GENERATION_PATH)
        elif self._state is AccessState.ADS:
            self._document.inject_script(self._ad_script_url)
            self._script_held = True
        return self._state

    def unmount(self) -> None:
        if self._script_held:
            self._document.release_script(self._ad_script_url)
            self._script_held = False
        self._mounted = False

    def render(self, content: str) -> str:
        """Return the markup for the current state wrapped around *content*."""

        if self._state is AccessState.LOADING:
            return render_loading_placeholder()
        if self._state is AccessState.DENIED:
            return ""
        if self._state is AccessState.ADS:
            return content + render_ad_panel()
        return content

    def __enter__(self) -> "RouteGuard":
        self.mount()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unmount()


__all__ = [
    "AD_PANEL_ID",
    "ADS_COOKIE",
    "AccessState",
    "DocumentHead",
    "KEY_GENERATION_PATH",
    "LOADING_TEXT",
    "RouteGuard",
    "VERIFIED_COOKIE",
    "build_flag_cookie",
    "evaluate_access",
    "format_duration_label",
    "parse_cookie_header",
    "render_ad_panel",
    "render_loading_placeholder",
]
