import os
import time
import logging
from playwright.sync_api import sync_playwright, Error as PlaywrightError

RENDER_TIMEOUT_MS = int(os.getenv("INKFRAME_RENDER_TIMEOUT_MS", "15000"))
WAIT_FOR_NETWORK_IDLE = os.getenv("INKFRAME_RENDER_WAIT_FOR_NETWORK_IDLE", "1").strip().lower() in {"1", "true", "yes", "on"}
BROWSER_ARGS = [arg for arg in os.getenv("INKFRAME_BROWSER_ARGS", "--no-sandbox").split() if arg]

logger = logging.getLogger(__name__)


class HtmlRenderError(Exception):
    pass


class PlaywrightHtmlRenderer:
    """Screenshots markup with headless Chromium at a fixed viewport."""

    def __init__(self, timeout_ms: int | None = None) -> None:
        self.timeout_ms = timeout_ms or RENDER_TIMEOUT_MS

    def render(
        self,
        markup: str,
        width: int,
        height: int,
        scale_factor: float = 1.0,
        timezone: str | None = None,
    ) -> bytes:
        started = time.monotonic()
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True, args=BROWSER_ARGS)
                try:
                    context = browser.new_context(
                        viewport={"width": width, "height": height},
                        device_scale_factor=scale_factor or 1.0,
                        timezone_id=timezone,
                    )
                    page = context.new_page()
                    page.set_default_timeout(self.timeout_ms)
                    page.set_content(
                        markup,
                        wait_until="networkidle" if WAIT_FOR_NETWORK_IDLE else "load",
                        timeout=self.timeout_ms,
                    )
                    screenshot = page.screenshot(type="png", full_page=False, timeout=self.timeout_ms)
                    context.close()
                finally:
                    browser.close()
        except PlaywrightError as exc:
            raise HtmlRenderError(f"HTML render failed: {exc}") from exc
        logger.info(
            "Rendered %dx%d@%.2f in %.2fs",
            width,
            height,
            scale_factor or 1.0,
            time.monotonic() - started,
        )
        return screenshot
