import asyncio
import logging
from typing import Any, List, Optional, Protocol, Set

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from site_analyzer.platform.config import Settings, get_settings
from site_analyzer.platform.logger import get_logger


class BrowserSessionPool(Protocol):
    """
    Bounded pool of headless-browser sessions shared by browser-based probes.

    The orchestrator only acquires and releases through this interface and
    always wraps acquire() in a cancellable, deadline-bounded wait.
    """

    async def acquire(self) -> Any: ...

    async def release(self, session: Any) -> None: ...

    async def close(self) -> None: ...


class SeleniumSessionPool:
    """
    Pool of headless Chrome drivers, created lazily up to `size`.

    Driver creation and teardown run in worker threads so the event loop is
    never blocked by Selenium.
    """

    def __init__(
        self,
        size: Optional[int] = None,
        chromedriver_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        settings = settings or get_settings()
        self.size = size or settings.BROWSER_POOL_SIZE
        self.chromedriver_path = chromedriver_path or settings.CHROMEDRIVER_PATH
        self.logger = logger or get_logger(__name__)
        self._idle: "asyncio.Queue[webdriver.Chrome]" = asyncio.Queue()
        self._drivers: List[webdriver.Chrome] = []
        self._created = 0
        self._closed = False
        self._late_quits: Set["asyncio.Task[None]"] = set()

    def build_driver(self) -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')

        if self.chromedriver_path:
            driver_service = Service(executable_path=self.chromedriver_path)
            driver = webdriver.Chrome(service=driver_service, options=chrome_options)
        else:
            driver = webdriver.Chrome(options=chrome_options)

        return driver

    @property
    def in_use(self) -> int:
        return self._created - self._idle.qsize()

    async def acquire(self) -> webdriver.Chrome:
        if self._closed:
            raise RuntimeError("Browser session pool is closed")

        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass

        if self._created < self.size:
            # Reserve the slot before yielding to the event loop
            self._created += 1
            building = asyncio.ensure_future(asyncio.to_thread(self.build_driver))
            try:
                # Shielded: the worker thread cannot be interrupted, only abandoned
                driver = await asyncio.shield(building)
            except BaseException:
                self._created -= 1
                if not building.done():
                    building.add_done_callback(self._discard_late_driver)
                raise
            self._drivers.append(driver)
            self.logger.info(f"Started browser session {self._created}/{self.size}")
            return driver

        return await self._idle.get()

    async def release(self, session: webdriver.Chrome) -> None:
        if self._closed:
            await self._quit(session)
            return
        self._idle.put_nowait(session)

    async def close(self) -> None:
        self._closed = True
        drivers, self._drivers = self._drivers, []
        for driver in drivers:
            await self._quit(driver)
        self._created = 0
        self.logger.info(f"Closed {len(drivers)} browser session(s)")

    def _discard_late_driver(self, building: "asyncio.Future[webdriver.Chrome]") -> None:
        """Quit a driver whose caller stopped waiting before it started."""
        if building.cancelled():
            return
        if building.exception() is not None:
            self.logger.warning(f"Abandoned browser session failed to start: {building.exception()}")
            return
        self.logger.info("Quitting browser session that started after its caller gave up")
        task = asyncio.ensure_future(self._quit(building.result()))
        self._late_quits.add(task)
        task.add_done_callback(self._late_quits.discard)

    async def _quit(self, driver: webdriver.Chrome) -> None:
        try:
            await asyncio.to_thread(driver.quit)
        except WebDriverException as e:
            self.logger.warning(f"Error closing browser session: {e}")
