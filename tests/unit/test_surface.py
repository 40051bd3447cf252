"""
Unit Tests for Off-screen Surfaces
==================================

Unit tests for surface lifetime tracking, the browser pool and the
Playwright-backed surface host.
"""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from poster_pipeline.core.rendering.surface import (
    MOUNT_ELEMENT_ID,
    BrowserPool,
    MountedSurface,
    PlaywrightSurfaceHost,
    RenderSurfaceError,
)
from poster_pipeline.models.schemas import RasterOptions

from tests.utils.mocks import InMemorySurfaceHost


@pytest.fixture
def options():
    return RasterOptions(width=400, height=600, scale=2.0)


class TestSurfaceHostLifetime:
    """Test the mount scope detaches on every exit path."""

    @pytest.mark.asyncio
    async def test_mount_and_detach(self, options):
        host = InMemorySurfaceHost()

        async with host.mount("<p>Hi</p>", options) as surface:
            assert isinstance(surface, MountedSurface)
            assert host.attached_count == 1
            assert host.attached_surfaces == [surface]
            assert surface.options == options

        assert host.attached_count == 0
        assert host.detached == [surface.surface_id]

    @pytest.mark.asyncio
    async def test_detach_on_error(self, options):
        host = InMemorySurfaceHost()

        with pytest.raises(ValueError):
            async with host.mount("<p>Hi</p>", options):
                raise ValueError("render failed")

        assert host.attached_count == 0
        assert len(host.detached) == 1

    @pytest.mark.asyncio
    async def test_detach_on_attach_failure(self, options):
        host = InMemorySurfaceHost(fail_on={"broken"})

        with pytest.raises(RuntimeError):
            async with host.mount("<p>broken</p>", options):
                pass

        assert host.attached_count == 0
        assert len(host.detached) == 1

    def test_surfaces_have_unique_ids(self, options):
        first = MountedSurface("<p>a</p>", options)
        second = MountedSurface("<p>a</p>", options)
        assert first.surface_id != second.surface_id
        assert "400x600" in repr(first)


class TestBrowserPool:
    """Test browser pool management."""

    @pytest.fixture
    def mock_settings(self):
        settings = Mock()
        settings.playwright_headless = True
        settings.browser_pool_size = 1
        return settings

    @pytest.fixture
    def browser_pool(self, mock_settings):
        with patch("poster_pipeline.core.rendering.surface.get_settings", return_value=mock_settings):
            return BrowserPool(pool_size=2)

    def test_browser_pool_initialization(self, browser_pool):
        assert browser_pool.pool_size == 2
        assert browser_pool.browsers == []
        assert browser_pool.initialized is False

    @pytest.mark.asyncio
    async def test_initialize_browser_pool_success(self, browser_pool):
        mock_browser = AsyncMock()
        mock_playwright = AsyncMock()
        mock_playwright.chromium.launch.return_value = mock_browser

        with patch("poster_pipeline.core.rendering.surface.async_playwright") as mock_async_playwright:
            mock_async_playwright.return_value.start = AsyncMock(return_value=mock_playwright)
            await browser_pool.initialize()

        assert browser_pool.initialized is True
        assert len(browser_pool.browsers) == 2
        assert mock_playwright.chromium.launch.await_count == 2

    @pytest.mark.asyncio
    async def test_initialize_failure(self, browser_pool):
        with patch("poster_pipeline.core.rendering.surface.async_playwright") as mock_async_playwright:
            mock_async_playwright.return_value.start = AsyncMock(side_effect=RuntimeError("no browser"))
            with pytest.raises(RenderSurfaceError, match="initialization failed"):
                await browser_pool.initialize()

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, browser_pool):
        browser = AsyncMock()
        browser_pool.browsers = [browser]

        acquired = await browser_pool.acquire()
        assert acquired is browser
        assert browser_pool.browsers == []

        browser_pool.release(acquired)
        assert browser_pool.browsers == [browser]

    @pytest.mark.asyncio
    async def test_acquire_uninitialized(self, browser_pool):
        with pytest.raises(RenderSurfaceError, match="not initialized"):
            await browser_pool.acquire()
        assert browser_pool._semaphore._value == 2

    @pytest.mark.asyncio
    async def test_close(self, browser_pool):
        browser = AsyncMock()
        playwright = AsyncMock()
        browser_pool.browsers = [browser]
        browser_pool._playwright = playwright

        await browser_pool.close()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert browser_pool.initialized is False


class TestPlaywrightSurfaceHost:
    """Test mounting into isolated browser contexts."""

    @pytest.fixture
    def page(self):
        page = AsyncMock()
        page.set_default_timeout = MagicMock()
        return page

    @pytest.fixture
    def context(self, page):
        context = AsyncMock()
        context.new_page.return_value = page
        return context

    @pytest.fixture
    def browser(self, context):
        browser = AsyncMock()
        browser.new_context.return_value = context
        return browser

    @pytest.fixture
    def pool(self, browser):
        pool = MagicMock(spec=BrowserPool)
        pool.initialized = True
        pool.acquire = AsyncMock(return_value=browser)
        pool.release = MagicMock()
        pool.close = AsyncMock()
        return pool

    @pytest.fixture
    def host(self, pool):
        return PlaywrightSurfaceHost(browser_pool=pool)

    def test_render_document(self, host, options):
        surface = MountedSurface('<div class="poster">Hello</div>', options, "#fafafa")
        document = host.render_document(surface)

        assert f'id="{MOUNT_ELEMENT_ID}"' in document
        assert '<div class="poster">Hello</div>' in document
        assert "width: 400px" in document
        assert "height: 600px" in document
        assert "#fafafa" in document

    @pytest.mark.asyncio
    async def test_mount_uses_isolated_context(self, host, pool, browser, context, page, options, test_settings):
        async with host.mount("<p>Hi</p>", options) as surface:
            assert surface.page is page
            assert host.attached_count == 1

        browser.new_context.assert_awaited_once_with(
            viewport={"width": 400, "height": 600},
            device_scale_factor=2.0,
            java_script_enabled=test_settings.mount_javascript_enabled,
        )
        page.set_default_timeout.assert_called_once_with(test_settings.playwright_timeout)
        content = page.set_content.call_args.args[0]
        assert "<p>Hi</p>" in content

        context.close.assert_awaited_once()
        pool.release.assert_called_once_with(browser)
        assert host.attached_count == 0
        assert surface.page is None

    @pytest.mark.asyncio
    async def test_mount_failure_releases_browser(self, host, pool, browser, page, options):
        page.set_content.side_effect = RuntimeError("navigation failed")

        with pytest.raises(RenderSurfaceError, match="navigation failed"):
            async with host.mount("<p>Hi</p>", options):
                pass

        pool.release.assert_called_once_with(browser)
        assert host.attached_count == 0

    @pytest.mark.asyncio
    async def test_context_close_failure_still_releases(self, host, pool, browser, context, options):
        context.close.side_effect = RuntimeError("already closed")

        async with host.mount("<p>Hi</p>", options):
            pass

        pool.release.assert_called_once_with(browser)

    @pytest.mark.asyncio
    async def test_auto_initializes_pool(self, host, pool, options):
        pool.initialized = False
        pool.initialize = AsyncMock()

        async with host.mount("<p>Hi</p>", options):
            pass

        pool.initialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_injected_pool_not_closed(self, host, pool):
        await host.close()
        pool.close.assert_not_awaited()
