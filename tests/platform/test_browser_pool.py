"""
Test the Selenium session pool

webdriver.Chrome is patched; no browser is started.
"""
import asyncio
import time
from unittest.mock import MagicMock, patch

import pytest
from selenium.common.exceptions import WebDriverException

from site_analyzer.platform.browser_pool import SeleniumSessionPool


class TestSeleniumSessionPool:

    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    def test_build_driver_is_headless(self, mock_chrome, settings):
        pool = SeleniumSessionPool(size=1, settings=settings)

        pool.build_driver()

        options = mock_chrome.call_args.kwargs["options"]
        assert "--headless" in options.arguments
        assert "--no-sandbox" in options.arguments

    @patch('site_analyzer.platform.browser_pool.Service')
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    def test_build_driver_uses_chromedriver_path(self, mock_chrome, mock_service, settings):
        pool = SeleniumSessionPool(size=1, chromedriver_path="/usr/bin/chromedriver", settings=settings)

        pool.build_driver()

        mock_service.assert_called_once_with(executable_path="/usr/bin/chromedriver")
        assert mock_chrome.call_args.kwargs["service"] is mock_service.return_value

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_drivers_created_lazily_and_reused(self, mock_chrome, settings):
        mock_chrome.side_effect = lambda **kwargs: MagicMock()
        pool = SeleniumSessionPool(size=2, settings=settings)

        first = await pool.acquire()
        await pool.release(first)
        again = await pool.acquire()

        assert again is first
        assert mock_chrome.call_count == 1
        assert pool.in_use == 1

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_acquire_waits_when_exhausted(self, mock_chrome, settings):
        mock_chrome.side_effect = lambda **kwargs: MagicMock()
        pool = SeleniumSessionPool(size=1, settings=settings)
        held = await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await pool.release(held)
        assert await asyncio.wait_for(waiter, timeout=1) is held
        assert mock_chrome.call_count == 1

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_failed_driver_start_frees_slot(self, mock_chrome, settings):
        mock_chrome.side_effect = [WebDriverException("chrome not found"), MagicMock()]
        pool = SeleniumSessionPool(size=1, settings=settings)

        with pytest.raises(WebDriverException):
            await pool.acquire()

        assert await pool.acquire() is not None

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_close_quits_every_driver(self, mock_chrome, settings):
        drivers = [MagicMock(), MagicMock()]
        drivers[1].quit.side_effect = WebDriverException("already gone")
        mock_chrome.side_effect = drivers
        pool = SeleniumSessionPool(size=2, settings=settings)
        first = await pool.acquire()
        await pool.acquire()
        await pool.release(first)

        await pool.close()

        drivers[0].quit.assert_called_once()
        drivers[1].quit.assert_called_once()
        with pytest.raises(RuntimeError):
            await pool.acquire()

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_release_after_close_quits_driver(self, mock_chrome, settings):
        driver = MagicMock()
        mock_chrome.return_value = driver
        pool = SeleniumSessionPool(size=1, settings=settings)
        held = await pool.acquire()

        await pool.close()
        driver.quit.reset_mock()
        await pool.release(held)

        driver.quit.assert_called_once()

    @pytest.mark.asyncio
    @patch('site_analyzer.platform.browser_pool.webdriver.Chrome')
    async def test_driver_started_after_caller_gave_up_is_quit(self, mock_chrome, settings):
        driver = MagicMock()

        def slow_start(**kwargs):
            time.sleep(0.2)
            return driver

        mock_chrome.side_effect = slow_start
        pool = SeleniumSessionPool(size=1, settings=settings)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pool.acquire(), timeout=0.05)
        assert pool.in_use == 0

        for _ in range(50):
            if driver.quit.called:
                break
            await asyncio.sleep(0.05)

        driver.quit.assert_called_once()
        assert driver not in pool._drivers
