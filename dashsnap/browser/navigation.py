"""Dashboard navigation, render-completion waits and page settings."""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

from loguru import logger

from dashsnap.browser.errors import CannotOpenPageError
from dashsnap.browser.launcher import BrowserSession

POLL_INTERVAL = 0.1
REQUIRED_STABLE_CHECKS = 3

TOAST_SETTLE_MS = 1000
LANGUAGE_SETTLE_MS = 1000
THEME_SETTLE_MS = 500

_NET_ERROR_RE = re.compile(r"net::(ERR_[A-Z_]+)")

LOCAL_STORAGE_DEFAULTS = {
    "dockedSidebar": '"always_hidden"',
    "selectedTheme": '{"dark": false}',
}

READY_CHECK_JS = """() => {
  const haEl = document.querySelector('home-assistant');
  if (!haEl || !haEl.shadowRoot) return false;
  const mainEl = haEl.shadowRoot.querySelector('home-assistant-main');
  if (!mainEl || !mainEl.shadowRoot) return false;
  const resolver = mainEl.shadowRoot.querySelector('partial-panel-resolver');
  if (!resolver || resolver._loading) return false;
  const panel = resolver.children[0];
  if (!panel) return false;
  return !('_loading' in panel) || !panel._loading;
}"""

STABILITY_METRICS_JS = """() => {
  const haEl = document.querySelector('home-assistant');
  if (!haEl) return {height: 0, content: 0};
  return {
    height: document.body.scrollHeight,
    content: (haEl.shadowRoot && haEl.shadowRoot.innerHTML || '').length,
  };
}"""

CLIENT_ROUTE_JS = """(path) => {
  const state = history.state;
  history.replaceState(state && state.root ? {root: true} : null, '', path);
  const event = new Event('location-changed');
  event.detail = {replace: true};
  window.dispatchEvent(event);
}"""

SET_ZOOM_JS = """(zoom) => { document.body.style.zoom = String(zoom); }"""

DISMISS_TOAST_AND_ZOOM_JS = """(zoom) => {
  document.body.style.zoom = String(zoom);
  const haEl = document.querySelector('home-assistant');
  if (!haEl || !haEl.shadowRoot) return false;
  const notifyEl = haEl.shadowRoot.querySelector('notification-manager');
  if (!notifyEl || !notifyEl.shadowRoot) return false;
  const actionEl = notifyEl.shadowRoot.querySelector('ha-toast *[slot=action]');
  if (!actionEl) return false;
  actionEl.click();
  return true;
}"""

SET_LANGUAGE_JS = """(lang) => {
  const haEl = document.querySelector('home-assistant');
  if (haEl && haEl._selectLanguage) haEl._selectLanguage(lang, false);
}"""

SET_THEME_JS = """({theme, dark}) => {
  const haEl = document.querySelector('home-assistant');
  if (haEl) haEl.dispatchEvent(new CustomEvent('settheme', {detail: {theme, dark}}));
}"""


@dataclass(frozen=True)
class NavigationResult:
    """Recommended settle delay after a navigation."""

    wait_time_ms: int


@dataclass(frozen=True)
class StabilityResult:
    """Outcome of a content stabilization wait."""

    stable: bool
    elapsed_ms: int


class NavigationController:
    """
    Gets the dashboard into a rendered, stable state.

    Operates on the BrowserSession handed to each call; it never holds on
    to a page between calls.
    """

    def __init__(
        self,
        target_url: str,
        token: str = "",
        client_side_routing: bool = True,
        default_wait_ms: int = 500,
        cold_start_extra_ms: int = 2500,
    ) -> None:
        self.target_url = target_url.rstrip("/")
        self.token = token
        self.client_side_routing = client_side_routing
        self.default_wait_ms = default_wait_ms
        self.cold_start_extra_ms = cold_start_extra_ms

    def page_url(self, path: str) -> str:
        return urljoin(self.target_url + "/", path.lstrip("/"))

    def build_auth_storage(self) -> dict[str, str]:
        """localStorage entries the frontend reads to skip its login flow."""
        client_id = self.target_url + "/"
        tokens = {
            "access_token": self.token,
            "token_type": "Bearer",
            "expires_in": 1800,
            "hassUrl": self.target_url,
            "clientId": client_id,
            "expires": 9999999999999,
            "refresh_token": "",
        }
        return {**LOCAL_STORAGE_DEFAULTS, "hassTokens": json.dumps(tokens)}

    def _auth_script(self) -> str:
        storage = json.dumps(self.build_auth_storage())
        return f"(() => {{ const s = {storage}; for (const [k, v] of Object.entries(s)) localStorage.setItem(k, v); }})();"

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate(self, session: BrowserSession, path: str) -> NavigationResult:
        """
        Navigate the session's page to a dashboard path.

        Raises:
            CannotOpenPageError: On a non-2xx response or network failure.
        """
        if session.is_first_navigation:
            result = await self._first_navigation(session, path)
            session.is_first_navigation = False
        elif path == session.last_path:
            logger.debug(f"Already on {path}, skipping navigation")
            return NavigationResult(wait_time_ms=0)
        else:
            result = await self._subsequent_navigation(session, path)

        session.last_path = path
        return result

    async def _first_navigation(self, session: BrowserSession, path: str) -> NavigationResult:
        page = session.page
        url = self.page_url(path)
        cdp = await session.context.new_cdp_session(page)
        registered = await cdp.send("Page.addScriptToEvaluateOnNewDocument", {"source": self._auth_script()})
        try:
            await self._goto(page, url)
        finally:
            try:
                await cdp.send("Page.removeScriptToEvaluateOnNewDocument", {"identifier": registered["identifier"]})
            except Exception as e:
                logger.warning(f"Failed to remove auth script: {e}")
            try:
                await cdp.detach()
            except Exception as e:
                logger.debug(f"CDP session detach failed: {e}")

        logger.debug(f"First navigation to {url} complete")
        return NavigationResult(wait_time_ms=self.default_wait_ms + self.cold_start_extra_ms)

    async def _subsequent_navigation(self, session: BrowserSession, path: str) -> NavigationResult:
        if self.client_side_routing:
            await session.page.evaluate(CLIENT_ROUTE_JS, path)
        else:
            await self._goto(session.page, self.page_url(path))
        return NavigationResult(wait_time_ms=self.default_wait_ms)

    async def _goto(self, page, url: str) -> None:
        try:
            response = await page.goto(url)
        except Exception as e:
            match = _NET_ERROR_RE.search(str(e))
            raise CannotOpenPageError(0, url, match.group(1) if match else str(e)) from e

        if response is None:
            raise CannotOpenPageError(0, url)
        if not response.ok:
            raise CannotOpenPageError(response.status, url)

    # ------------------------------------------------------------------
    # Waits
    # ------------------------------------------------------------------

    async def wait_for_load(self, session: BrowserSession, timeout_ms: int = 10000) -> bool:
        """
        Poll the frontend's component loading flags until ready.

        A timeout is logged and reported as False, never raised.
        """
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            try:
                if await _evaluate_before(session.page, READY_CHECK_JS, deadline):
                    return True
            except asyncio.TimeoutError:
                pass
            if time.monotonic() >= deadline:
                logger.info(f"Timeout waiting for dashboard to finish loading ({timeout_ms}ms)")
                return False
            await asyncio.sleep(POLL_INTERVAL)

    async def wait_for_stable(self, session: BrowserSession, timeout_ms: int = 5000) -> StabilityResult:
        """
        Wait until rendered height and content length stop changing.

        Stable means three consecutive readings identical to the one before.
        """
        start = time.monotonic()
        timeout = timeout_ms / 1000
        last: tuple[int, int] | None = None
        stable_checks = 0

        while time.monotonic() - start < timeout:
            try:
                metrics = await _evaluate_before(session.page, STABILITY_METRICS_JS, start + timeout)
            except asyncio.TimeoutError:
                break
            reading = (metrics.get("height", 0), metrics.get("content", 0))

            if reading == last:
                stable_checks += 1
                if stable_checks >= REQUIRED_STABLE_CHECKS:
                    elapsed = int((time.monotonic() - start) * 1000)
                    logger.debug(f"Page stable after {elapsed}ms ({stable_checks} checks)")
                    return StabilityResult(stable=True, elapsed_ms=elapsed)
            else:
                stable_checks = 0

            last = reading
            await asyncio.sleep(POLL_INTERVAL)

        elapsed = int((time.monotonic() - start) * 1000)
        logger.debug(f"Page stability timeout after {elapsed}ms")
        return StabilityResult(stable=False, elapsed_ms=elapsed)

    # ------------------------------------------------------------------
    # Page settings
    # ------------------------------------------------------------------

    async def apply_page_settings(
        self,
        session: BrowserSession,
        zoom: float = 1.0,
        lang: str | None = None,
        theme: str | None = None,
        dark: bool = False,
        first_navigation: bool = False,
    ) -> int:
        """
        Apply zoom, language and theme, skipping values already in effect.

        Returns:
            Extra settle delay in milliseconds caused by the changes.
        """
        page = session.page
        wait_ms = 0

        if first_navigation:
            await page.evaluate(SET_ZOOM_JS, zoom)
        elif await page.evaluate(DISMISS_TOAST_AND_ZOOM_JS, zoom):
            logger.debug("Dismissed notification toast")
            wait_ms += TOAST_SETTLE_MS

        if lang != session.last_lang:
            await page.evaluate(SET_LANGUAGE_JS, lang or "en")
            session.last_lang = lang
            wait_ms += LANGUAGE_SETTLE_MS

        if theme != session.last_theme or dark != session.last_dark:
            await page.evaluate(SET_THEME_JS, {"theme": theme or "", "dark": bool(dark)})
            session.last_theme = theme
            session.last_dark = dark
            wait_ms += THEME_SETTLE_MS

        return wait_ms


async def _evaluate_before(page: Any, script: str, deadline: float) -> Any:
    """Evaluate ``script``, raising asyncio.TimeoutError once ``deadline`` (monotonic) passes."""
    remaining = max(deadline - time.monotonic(), 0.001)
    return await asyncio.wait_for(page.evaluate(script), timeout=remaining)
