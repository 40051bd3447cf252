"""
Off-screen Surfaces
===================

Mounting of untrusted poster markup into isolated, throwaway render targets.

A surface only exists inside ``SurfaceHost.mount()``. Leaving the block, by
success, error or cancellation, detaches it, so no mounted markup outlives
the task that rendered it.
"""

from typing import Any, AsyncGenerator, Dict, List, Optional
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
import asyncio
import uuid

import jinja2
from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from poster_pipeline.config.logging import get_logger
from poster_pipeline.config.settings import get_settings
from poster_pipeline.models.schemas import RasterOptions

logger = get_logger(__name__)

MOUNT_ELEMENT_ID = "poster-mount"


class RenderSurfaceError(Exception):
    """Exception raised when a surface cannot be mounted."""

    pass


class MountedSurface:
    """One mounted copy of a poster's markup."""

    def __init__(self, markup: str, options: RasterOptions, background: str = "#ffffff"):
        self.surface_id = uuid.uuid4().hex
        self.markup = markup
        self.options = options
        self.background = background
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def __repr__(self) -> str:
        return (
            f"MountedSurface(id={self.surface_id!r}, "
            f"size={self.options.width}x{self.options.height}, scale={self.options.scale})"
        )


class SurfaceHost(ABC):
    """Owns the render document and tracks every surface attached to it."""

    def __init__(self) -> None:
        self.logger: Any = logger.bind(component="surface_host")  # structlog.BoundLoggerBase
        self._attached: Dict[str, MountedSurface] = {}

    @property
    def attached_count(self) -> int:
        """Number of surfaces currently attached."""
        return len(self._attached)

    @property
    def attached_surfaces(self) -> List[MountedSurface]:
        return list(self._attached.values())

    @asynccontextmanager
    async def mount(
        self, markup: str, options: RasterOptions, background: str = "#ffffff"
    ) -> AsyncGenerator[MountedSurface, None]:
        """
        Mount markup on a fresh surface sized to the raster options.

        Args:
            markup: Poster markup to inject
            options: Surface width, height and scale
            background: Surface background colour

        Yields:
            The mounted surface, detached again when the block exits
        """
        surface = MountedSurface(markup, options, background)
        self._attached[surface.surface_id] = surface
        try:
            await self._attach(surface)
            self.logger.debug("Surface mounted", surface_id=surface.surface_id)
            yield surface
        finally:
            self._attached.pop(surface.surface_id, None)
            await self._detach(surface)
            self.logger.debug("Surface detached", surface_id=surface.surface_id)

    @abstractmethod
    async def _attach(self, surface: MountedSurface) -> None:
        """Create the render target for a surface and inject its markup."""
        pass

    @abstractmethod
    async def _detach(self, surface: MountedSurface) -> None:
        """Destroy the render target. Must tolerate a partially attached surface."""
        pass

    async def close(self) -> None:
        """Release host resources."""
        pass


class BrowserPool:
    """Browser instance pool for efficient resource management."""

    def __init__(self, pool_size: int = 1):
        self.pool_size = pool_size
        self.browsers: List[Browser] = []
        self._semaphore = asyncio.Semaphore(pool_size)
        self._playwright: Optional[Playwright] = None
        self.settings = get_settings()
        self.logger: Any = logger.bind(component="browser_pool")  # structlog.BoundLoggerBase

    @property
    def initialized(self) -> bool:
        return self._playwright is not None

    async def initialize(self) -> None:
        """Initialize browser pool."""
        try:
            self._playwright = await async_playwright().start()

            for _ in range(self.pool_size):
                browser = await self._playwright.chromium.launch(
                    headless=self.settings.playwright_headless,
                    args=[
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-dev-shm-usage",
                    ],
                )
                self.browsers.append(browser)

            self.logger.info("Browser pool initialized", pool_size=self.pool_size)
        except Exception as e:
            self.logger.error("Failed to initialize browser pool", error=str(e))
            raise RenderSurfaceError(f"Browser pool initialization failed: {e}")

    async def close(self) -> None:
        """Close all browsers in the pool."""
        for browser in self.browsers:
            await browser.close()
        self.browsers = []

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self.logger.info("Browser pool closed")

    async def acquire(self) -> Browser:
        """Take a browser out of the pool, waiting for one to be free."""
        await self._semaphore.acquire()
        if not self.browsers:
            self._semaphore.release()
            raise RenderSurfaceError("Browser pool not initialized")
        return self.browsers.pop()

    def release(self, browser: Browser) -> None:
        """Return a browser taken with acquire()."""
        self.browsers.append(browser)
        self._semaphore.release()


class PlaywrightSurfaceHost(SurfaceHost):
    """Mounts each surface in its own browser context and page."""

    def __init__(self, browser_pool: Optional[BrowserPool] = None):
        super().__init__()
        self.settings = get_settings()
        self.browser_pool = browser_pool or BrowserPool(self.settings.browser_pool_size)
        self._own_pool = browser_pool is None
        self._setup_jinja2_environment()

    def _setup_jinja2_environment(self) -> None:
        """Setup Jinja2 template environment."""
        template_dir = Path(__file__).parent / "templates"
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
        )

    def render_document(self, surface: MountedSurface) -> str:
        """Wrap a surface's markup in the mount shell document."""
        template = self.env.get_template("mount.html")
        return template.render(
            mount_id=MOUNT_ELEMENT_ID,
            width=surface.options.width,
            height=surface.options.height,
            background=surface.background,
            markup=surface.markup,
        )

    async def _attach(self, surface: MountedSurface) -> None:
        if not self.browser_pool.initialized:
            self.logger.info("Auto-initializing browser pool for mounting")
            await self.browser_pool.initialize()

        surface.browser = await self.browser_pool.acquire()
        try:
            surface.context = await surface.browser.new_context(
                viewport={"width": surface.options.width, "height": surface.options.height},
                device_scale_factor=surface.options.scale,
                java_script_enabled=self.settings.mount_javascript_enabled,
            )
            surface.page = await surface.context.new_page()
            surface.page.set_default_timeout(self.settings.playwright_timeout)
            await surface.page.set_content(
                self.render_document(surface), wait_until="domcontentloaded"
            )
        except RenderSurfaceError:
            raise
        except Exception as e:
            raise RenderSurfaceError(f"Failed to mount markup: {e}")

    async def _detach(self, surface: MountedSurface) -> None:
        try:
            if surface.context is not None:
                await surface.context.close()
        except Exception as e:
            self.logger.warning(
                "Browser context close failed", surface_id=surface.surface_id, error=str(e)
            )
        finally:
            surface.page = None
            surface.context = None
            if surface.browser is not None:
                self.browser_pool.release(surface.browser)
                surface.browser = None

    async def close(self) -> None:
        """Close the browser pool if this host created it."""
        if self._own_pool:
            await self.browser_pool.close()
        self.logger.info("Surface host closed")
