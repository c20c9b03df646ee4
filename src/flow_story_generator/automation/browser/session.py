"""Attach to (or launch) a browser and locate the Flow tab.

The page's DOM mutations are forwarded to Python through an exposed function so
waits can react to changes instead of relying on polling alone.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable
from typing import Any

from playwright.async_api import Browser, Page, Playwright, async_playwright

from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.automation.workflow.waiting import ChangeListener

logger = logging.getLogger(__name__)

BINDING_NAME = "__flowStoryMutation"

OBSERVER_SCRIPT = """
(() => {
  if (window.__flowStoryObserver) return;
  let pending = false;
  const notify = () => {
    if (pending) return;
    pending = true;
    queueMicrotask(() => {
      pending = false;
      const binding = window.__flowStoryMutation;
      if (binding) binding().catch(() => {});
    });
  };
  const start = () => {
    window.__flowStoryObserver = new MutationObserver(notify);
    window.__flowStoryObserver.observe(document.documentElement, {
      childList: true,
      subtree: true,
      attributes: true,
    });
  };
  if (document.documentElement) {
    start();
  } else {
    document.addEventListener('DOMContentLoaded', start, { once: true });
  }
})();
"""


class DomChangeSource:
    """`ChangeSource` fed by a page-side MutationObserver."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    async def install(self, page: Page) -> None:
        await page.expose_function(BINDING_NAME, self.notify)
        await page.add_init_script(OBSERVER_SCRIPT)
        await page.evaluate(OBSERVER_SCRIPT)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, *_args: Any) -> None:
        for listener in list(self._listeners):
            listener()


def _matches(url: str, pattern: str) -> bool:
    return fnmatch.fnmatchcase(url, pattern)


class BrowserSession:
    """Async context manager attaching to the Flow page.

    With `cdp_url` set the operator's running (logged-in) browser is reused and
    left open on exit; otherwise a Chromium instance is launched and closed.
    """

    def __init__(self, settings: FlowStorySettings) -> None:
        self._settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._launched = False
        self.page: Page | None = None
        self.change_source = DomChangeSource()

    async def __aenter__(self) -> BrowserSession:
        self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium
        cdp_url = self._settings.cdp_url.strip()
        if cdp_url:
            self._browser = await chromium.connect_over_cdp(cdp_url)
            logger.info("Connected to browser", extra={"cdp_url": cdp_url})
        else:
            self._browser = await chromium.launch(headless=False)
            self._launched = True
            logger.info("Launched browser")

        self.page = self._find_page(self._browser) or await self._open_page(self._browser)
        await self.change_source.install(self.page)
        logger.info("Attached to Flow page", extra={"url": self.page.url})
        return self

    async def __aexit__(self, *_exc: object) -> None:
        if self._browser is not None and self._launched:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._browser = None
        self._playwright = None
        self.page = None

    def _find_page(self, browser: Browser) -> Page | None:
        for context in browser.contexts:
            for page in context.pages:
                if _matches(page.url, self._settings.target_origin):
                    return page
        return None

    async def _open_page(self, browser: Browser) -> Page:
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        page = await context.new_page()
        await page.goto(self._settings.flow_url)
        logger.info("Opened Flow page", extra={"url": self._settings.flow_url})
        return page
