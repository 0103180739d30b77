"""Shared fakes standing in for Playwright objects."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Any, Callable

import pytest
from PIL import Image

from dashsnap.browser.launcher import BrowserSession
from dashsnap.browser.navigation import (
    DISMISS_TOAST_AND_ZOOM_JS,
    READY_CHECK_JS,
    STABILITY_METRICS_JS,
)


def png_bytes(width: int = 40, height: int = 30, color: tuple[int, int, int] = (200, 200, 200)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class FakeCDPSession:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.detached = False

    async def send(self, method: str, params: dict | None = None) -> dict:
        self.sent.append((method, params or {}))
        if method == "Page.addScriptToEvaluateOnNewDocument":
            return {"identifier": "script-1"}
        return {}

    async def detach(self) -> None:
        self.detached = True


class FakeContext:
    def __init__(self) -> None:
        self.cdp = FakeCDPSession()

    async def new_cdp_session(self, page: Any) -> FakeCDPSession:
        return self.cdp


class FakePage:
    """Records calls; evaluate() answers by script."""

    def __init__(self) -> None:
        self.url = "about:blank"
        self.viewport_size = {"width": 758, "height": 1024}
        self.goto_status = 200
        self.goto_error: Exception | None = None
        self.ready = True
        self.metrics = [{"height": 1000, "content": 500}]
        self.toast = False
        self.screenshot_error: Exception | None = None
        self.screenshot_data = png_bytes()
        self.gotos: list[str] = []
        self.evaluated: list[tuple[str, Any]] = []
        self.screenshots: list[dict] = []
        self.closed = False

    async def goto(self, url: str) -> FakeResponse:
        self.gotos.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        return FakeResponse(self.goto_status)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        if script == READY_CHECK_JS:
            return self.ready
        if script == STABILITY_METRICS_JS:
            if len(self.metrics) > 1:
                return self.metrics.pop(0)
            return self.metrics[0]
        if script == DISMISS_TOAST_AND_ZOOM_JS:
            return self.toast
        return None

    async def set_viewport_size(self, viewport: dict) -> None:
        self.viewport_size = dict(viewport)

    async def screenshot(self, **kwargs: Any) -> bytes:
        self.screenshots.append(kwargs)
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return self.screenshot_data

    async def close(self) -> None:
        self.closed = True

    def scripts(self, script: str) -> list[Any]:
        return [arg for evaluated, arg in self.evaluated if evaluated == script]


class UnresponsivePage(FakePage):
    """A renderer that never answers evaluate()."""

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        await asyncio.Event().wait()


class FakeBrowser:
    def __init__(self) -> None:
        self.connected = True

    def is_connected(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.connected = False


class FakeLauncher:
    """
    Launches fake sessions.

    The next ``fail_next`` launches raise. ``configure(page, index)`` can
    adjust each new page before it is handed out.
    """

    def __init__(self, fail_next: int = 0, configure: Callable[[FakePage, int], None] | None = None) -> None:
        self.fail_next = fail_next
        self.configure = configure
        self.page_factory: Callable[[], FakePage] = FakePage
        self.launches = 0
        self.closes = 0
        self.sessions: list[BrowserSession] = []

    async def launch(self) -> BrowserSession:
        self.launches += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RuntimeError("launch failed")
        page = self.page_factory()
        if self.configure is not None:
            self.configure(page, len(self.sessions))
        session = BrowserSession(browser=FakeBrowser(), page=page, context=FakeContext())
        self.sessions.append(session)
        return session

    async def close(self, session: BrowserSession) -> None:
        self.closes += 1
        if session.browser is not None:
            await session.browser.close()
        session.browser = None
        session.page = None


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def fake_session() -> BrowserSession:
    return BrowserSession(browser=FakeBrowser(), page=FakePage(), context=FakeContext())
