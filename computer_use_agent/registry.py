"""
Session id -> live browser handle, with at most one browser per id.
"""
import asyncio
import functools
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .browser import BrowserHandle, launch_cdp_browser
from .config import AgentConfig
from .errors import BrowserLaunchError
from .overlay import OverlayChannel

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[], Awaitable[BrowserHandle]]


class BrowserSessionRegistry:
    """
    Owns every live browser. Handles are created lazily by `ensure` and only
    released by `close` / `close_all`.
    """

    def __init__(
        self,
        browser_factory: BrowserFactory,
        overlay: Optional[OverlayChannel] = None,
        viewport: tuple = (1280, 800),
        start_url: Optional[str] = "https://www.google.com",
    ):
        self._factory = browser_factory
        self._overlay = overlay
        self._viewport = viewport
        self._start_url = start_url
        self._handles: Dict[str, BrowserHandle] = {}
        # In-flight launches and closes, so each id has at most one browser
        self._launching: Dict[str, "asyncio.Future[BrowserHandle]"] = {}
        self._closing: Dict[str, "asyncio.Future[None]"] = {}

    @classmethod
    def from_config(cls, config: AgentConfig, overlay: Optional[OverlayChannel] = None) -> "BrowserSessionRegistry":
        factory = functools.partial(launch_cdp_browser, headless=config.headless, chrome_path=config.chrome_path)
        return cls(
            factory,
            overlay=overlay,
            viewport=(config.viewport_width, config.viewport_height),
            start_url=config.start_url,
        )

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def session_ids(self) -> List[str]:
        return list(self._handles)

    def get(self, session_id: str) -> Optional[BrowserHandle]:
        """Existing handle or None; never launches"""
        return self._handles.get(session_id)

    async def ensure(self, session_id: str) -> BrowserHandle:
        """
        The session's browser, launching it on first use. Concurrent callers
        share one in-flight launch; a close in progress is waited out first.
        """
        while True:
            handle = self._handles.get(session_id)
            if handle is not None:
                return handle

            closing = self._closing.get(session_id)
            if closing is not None:
                await asyncio.shield(closing)
                continue

            launch = self._launching.get(session_id)
            if launch is None:
                launch = asyncio.ensure_future(self._launch_and_register(session_id))
                self._launching[session_id] = launch
            # A cancelled caller does not cancel the shared launch
            return await asyncio.shield(launch)

    async def _launch_and_register(self, session_id: str) -> BrowserHandle:
        try:
            handle = await self._launch(session_id)
            self._handles[session_id] = handle
            return handle
        finally:
            self._launching.pop(session_id, None)

    async def _launch(self, session_id: str) -> BrowserHandle:
        logger.info(f"🚀 Launching browser for session {session_id}")
        try:
            handle = await self._factory()
        except Exception as e:
            raise BrowserLaunchError(f"Failed to launch browser for session {session_id}: {e}") from e

        try:
            await handle.set_viewport(*self._viewport)
            if self._overlay is not None:
                await self._overlay.install(handle)
            if self._start_url:
                await handle.navigate(self._start_url)
        except Exception as e:
            try:
                await handle.close()
            except Exception as close_error:
                logger.warning(f"Failed to close half-started browser: {close_error}")
            raise BrowserLaunchError(f"Failed to prepare browser for session {session_id}: {e}") from e

        logger.info(f"✅ Browser ready for session {session_id}")
        return handle

    async def close(self, session_id: str) -> None:
        """Release the session's browser; unknown ids are a no-op"""
        launch = self._launching.get(session_id)
        if launch is not None:
            try:
                await asyncio.shield(launch)
            except BrowserLaunchError:
                return

        closing = self._closing.get(session_id)
        if closing is not None:
            await asyncio.shield(closing)
            return

        handle = self._handles.pop(session_id, None)
        if handle is None:
            return

        done = asyncio.get_running_loop().create_future()
        self._closing[session_id] = done
        try:
            logger.info(f"🧹 Closing browser for session {session_id}")
            await handle.close()
        finally:
            del self._closing[session_id]
            done.set_result(None)

    async def close_all(self) -> None:
        for session_id in set(self._handles) | set(self._launching):
            try:
                await self.close(session_id)
            except Exception as e:
                logger.error(f"Failed to close browser for session {session_id}: {e}")
