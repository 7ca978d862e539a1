"""
Consent Automation - Selenium-driven "Setuju" click

Opens the BPJS follow-up URL in Chrome and confirms the SweetAlert consent
dialog on the clinic's behalf.

The Chrome driver is expensive to start and the consent page cannot be driven
in parallel, so one ``ConsentBrowser`` owns a single lazily created driver.
Pipeline runs borrow it through ``session()``, which grants exclusive use.
A driver that raises a WebDriver error is quit at once so the next job gets a
fresh Chrome; after ``close()`` no new driver is launched.

Usage:
    browser = ConsentBrowser()
    async with browser.session() as agent:
        agreed = await agent.agree(url)
    await browser.close()
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from utils.config import settings

logger = logging.getLogger(__name__)

AGREE_BUTTON = (
    By.XPATH,
    "//button[contains(concat(' ', normalize-space(@class), ' '), ' swal2-confirm ')"
    " and contains(normalize-space(.), 'Setuju')]",
)


class BrowserClosedError(RuntimeError):
    """The browser was closed for shutdown and will not be relaunched."""


def create_chrome_driver(headless: bool) -> webdriver.Chrome:
    """Launch Chrome with container-friendly flags."""
    chrome_options = Options()
    if headless:
        chrome_options.add_argument("--headless=new")

    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-setuid-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--disable-accelerated-2d-canvas")
    chrome_options.add_argument("--disable-gpu")
    chrome_options.add_argument("--window-size=1280,900")

    return webdriver.Chrome(
        service=Service(ChromeDriverManager().install()), options=chrome_options
    )


class ConsentAgent:
    """Handle given to one pipeline run for performing consent clicks."""

    def __init__(self, browser: "ConsentBrowser") -> None:
        self._browser = browser

    async def agree(self, url: str) -> bool:
        """
        Confirm the consent dialog behind ``url``.

        Returns:
            True if the "Setuju" button was clicked; False on any browser failure
        """
        return await asyncio.to_thread(self._browser.agree_blocking, url)


class ConsentBrowser:
    """Owner of the process-wide Chrome driver."""

    def __init__(
        self,
        headless: bool | None = None,
        agree_timeout: float | None = None,
        settle_seconds: float | None = None,
        driver_factory: Callable[[bool], Any] = create_chrome_driver,
    ) -> None:
        self.headless = settings.headless if headless is None else headless
        self.agree_timeout = agree_timeout if agree_timeout is not None else settings.AGREE_TIMEOUT
        self.settle_seconds = settle_seconds if settle_seconds is not None else settings.AGREE_SETTLE_SECONDS
        self._driver_factory = driver_factory
        self._driver: Any | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_driver(self) -> Any:
        if self._closed:
            raise BrowserClosedError("Browser was closed for shutdown")

        if self._driver is None:
            mode = "headless" if self.headless else "headed"
            logger.info("Launching a %s browser instance...", mode)
            driver = self._driver_factory(self.headless)
            if self._closed:
                # close() ran while Chrome was starting
                _quit_driver(driver)
                raise BrowserClosedError("Browser was closed for shutdown")
            self._driver = driver
            logger.info("Browser instance ready")
        return self._driver

    def agree_blocking(self, url: str) -> bool:
        """Blocking consent click; runs in a worker thread."""
        try:
            driver = self._ensure_driver()
            driver.get(url)

            button = WebDriverWait(driver, self.agree_timeout).until(
                EC.element_to_be_clickable(AGREE_BUTTON)
            )
            logger.info('Found "Setuju" button, clicking...')
            button.click()

            time.sleep(self.settle_seconds)
            logger.info('Successfully clicked "Setuju" button.')
            return True

        except BrowserClosedError as e:
            logger.warning("Consent step skipped", extra={"url": url, "error": str(e)})
            return False
        except TimeoutException as e:
            logger.error(
                "Consent button did not appear in time",
                extra={"url": url, "timeout": self.agree_timeout, "error": str(e)},
            )
            return False
        except WebDriverException as e:
            logger.error("Failed to agree to verification via Selenium", extra={"url": url, "error": str(e)})
            self._discard()
            return False
        except Exception as e:
            # Driver download or launch failures surface here.
            logger.error("Browser unavailable for consent step", extra={"url": url, "error": str(e)}, exc_info=True)
            self._discard()
            return False
        finally:
            # Fresh cookies per job, like a new browser context.
            driver = self._driver
            if driver is not None:
                try:
                    driver.delete_all_cookies()
                except WebDriverException:
                    self._discard()

    def _discard(self) -> None:
        """Drop a driver that raised; the next job launches a fresh one."""
        if self._driver is not None:
            logger.warning("Discarding browser after WebDriver error")
        self._quit()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ConsentAgent]:
        """Exclusive use of the browser for the duration of a pipeline run."""
        async with self._lock:
            try:
                yield ConsentAgent(self)
            finally:
                if self._closed and self._driver is not None:
                    await asyncio.to_thread(self._quit)

    def _quit(self) -> None:
        driver, self._driver = self._driver, None
        if driver is not None:
            _quit_driver(driver)

    async def close(self) -> None:
        """
        Quit the driver and refuse to launch another one.

        Safe to call repeatedly and while a session is in progress; the running
        pipeline sees ``closed`` and stops before its next job.
        """
        self._closed = True
        if self._driver is None:
            return
        logger.info("Closing browser")
        await asyncio.to_thread(self._quit)
        logger.info("Browser closed")


def _quit_driver(driver: Any) -> None:
    try:
        driver.quit()
    except WebDriverException as e:
        logger.warning("Error while closing browser", extra={"error": str(e)})
