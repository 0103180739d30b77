"""Headless Chromium launch and teardown via Playwright."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger
from playwright.async_api import async_playwright

from dashsnap.browser.errors import BrowserCrashError
from dashsnap.config.schema import BrowserConfig

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright


# Flags tuned for a headless, trusted, single-page dashboard renderer.
CHROMIUM_ARGS = [
    "--autoplay-policy=user-gesture-required",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-component-update",
    "--disable-default-apps",
    "--disable-extensions",
    "--disable-hang-monitor",
    "--disable-renderer-backgrounding",
    "--disable-client-side-phishing-detection",
    "--disable-setuid-sandbox",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-domain-reliability",
    "--disable-features=AudioServiceOutOfProcess,IsolateOrigins,site-per-process",
    "--disable-ipc-flooding-protection",
    "--disable-notifications",
    "--disable-popup-blocking",
    "--disable-print-preview",
    "--disable-prompt-on-repost",
    "--disable-speech-api",
    "--disable-sync",
    "--metrics-recording-only",
    "--mute-audio",
    "--no-default-browser-check",
    "--no-first-run",
    "--no-pings",
    "--hide-scrollbars",
    "--password-store=basic",
    "--use-mock-keychain",
    "--disable-gpu",
    "--disable-accelerated-2d-canvas",
    "--disable-software-rasterizer",
    "--disk-cache-size=1",
    "--media-cache-size=1",
]

DEFAULT_VIEWPORT = {"width": 758, "height": 1024}

PING_JS = "() => 1"


@dataclass
class BrowserSession:
    """
    One browser process and its single page.

    Owned by BrowserSessionManager and replaced wholesale on recovery, so
    every cached value here starts fresh after a relaunch.
    """

    browser: Any
    page: Any
    playwright: Any = None
    context: Any = None
    is_first_navigation: bool = True
    last_path: str | None = None
    last_lang: str | None = None
    last_theme: str | None = None
    last_dark: bool | None = None
    page_error_detected: bool = False
    disconnected: bool = False
    launched_at: float = field(default_factory=time.time)

    def is_connected(self) -> bool:
        if self.disconnected or self.browser is None:
            return False
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False

    async def ping(self, timeout: float = 2.0) -> bool:
        """Round-trip a trivial script through the renderer; False if it does not answer in time."""
        if not self.is_connected() or self.page is None:
            return False
        try:
            await asyncio.wait_for(self.page.evaluate(PING_JS), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Browser did not respond within {timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Browser responsiveness check failed: {e}")
            return False
        return True

    @property
    def uptime(self) -> float:
        return time.time() - self.launched_at

    def mark_disconnected(self) -> None:
        logger.error("Browser process disconnected")
        self.disconnected = True


class ChromiumLauncher:
    """Starts and stops the Chromium process backing a BrowserSession."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig()

    @property
    def args(self) -> list[str]:
        args = list(CHROMIUM_ARGS)
        if self.config.low_end_device_mode:
            args.append("--enable-low-end-device-mode")
        args.extend(self.config.extra_args)
        return args

    async def launch(self) -> BrowserSession:
        """
        Launch Chromium and open the single page.

        Raises:
            BrowserCrashError: If the browser could not be started.
        """
        logger.info("Starting browser")
        playwright: Playwright | None = None
        browser: Browser | None = None

        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=self.config.headless,
                executable_path=self.config.executable_path,
                args=self.args,
            )
            context: BrowserContext = await browser.new_context(viewport=dict(DEFAULT_VIEWPORT))
            page: Page = await context.new_page()
            page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        except Exception as e:
            await self._close_quietly(browser, playwright)
            raise BrowserCrashError(e) from e

        session = BrowserSession(browser=browser, page=page, playwright=playwright, context=context)
        browser.on("disconnected", lambda _: session.mark_disconnected())
        self._attach_page_logging(session)
        logger.info(f"Browser started (version {browser.version})")
        return session

    async def close(self, session: BrowserSession) -> None:
        """Close page, browser and driver. Errors are logged, not raised."""
        try:
            if session.page is not None:
                await session.page.close()
        except Exception as e:
            logger.warning(f"Error closing page during cleanup: {e}")

        await self._close_quietly(session.browser, session.playwright)
        session.page = None
        session.browser = None
        session.playwright = None
        session.context = None
        logger.info("Closed browser")

    async def _close_quietly(self, browser: Any, playwright: Any) -> None:
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser during cleanup: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping Playwright: {e}")

    def _attach_page_logging(self, session: BrowserSession) -> None:
        page = session.page

        def on_page_error(error: Any) -> None:
            message = getattr(error, "message", str(error))
            # Network failures land on chrome-error:// pages, which spam localStorage errors.
            if page.url.startswith("chrome-error://") and "localStorage" in message:
                return
            logger.warning(f"PAGE ERROR {message}")
            session.page_error_detected = True

        def on_crash(_: Any) -> None:
            logger.error("Page crashed")
            session.page_error_detected = True

        page.on("framenavigated", lambda frame: logger.debug(f"Frame navigated {frame.url}"))
        page.on("console", lambda msg: logger.debug(f"CONSOLE {msg.type[:3].upper()} {msg.text}"))
        page.on("pageerror", on_page_error)
        page.on("crash", on_crash)
        page.on(
            "requestfailed",
            lambda request: logger.debug(f"REQUEST-FAILED {request.failure} {request.url}"),
        )
        if self.config.debug_responses:
            page.on("response", lambda response: logger.debug(f"RESPONSE {response.status} {response.url}"))
