"""
On-page visual feedback: a cursor marker that follows mouse events and a step
banner describing what the agent just did.

Everything here is a side effect. Failures are logged and swallowed so the
agent loop never depends on the overlay.
"""
import asyncio
import json
import logging
from typing import Optional, Sequence

from .browser import BrowserHandle

logger = logging.getLogger(__name__)


CURSOR_SCRIPT = """
(function() {
    // Top-level frame only
    if (window !== window.parent) return;
    window.addEventListener('DOMContentLoaded', () => {
        const box = document.createElement('agent-mouse-pointer');
        const style = document.createElement('style');
        style.innerHTML = `
            agent-mouse-pointer {
                pointer-events: none;
                position: absolute;
                top: 0;
                left: 0;
                z-index: 2147483646;
                width: 20px;
                height: 20px;
                margin: -10px 0 0 -10px;
                border-radius: 50%;
                background: rgba(62, 207, 142, 0.6);
                border: 2px solid #249361;
                transition: transform 0.1s;
            }
            agent-mouse-pointer.pressed {
                transform: scale(1.5);
                background: rgba(99, 102, 241, 0.7);
            }
        `;
        document.head.appendChild(style);
        document.body.appendChild(box);

        let releaseTimeout;
        document.addEventListener('mousedown', () => {
            box.classList.add('pressed');
            clearTimeout(releaseTimeout);
            releaseTimeout = setTimeout(() => box.classList.remove('pressed'), 1000);
        }, true);
        document.addEventListener('mousemove', event => {
            box.style.left = event.pageX + 'px';
            box.style.top = event.pageY + 'px';
        }, true);
    }, false);
})();
"""

BANNER_SCRIPT = """
(function() {
    let hideTimeout;
    window.addEventListener('DOMContentLoaded', () => {
        const overlay = document.createElement('div');
        overlay.id = 'agent-step-overlay';
        const style = document.createElement('style');
        style.innerHTML = `
            #agent-step-overlay {
                position: fixed;
                top: 20px;
                right: 20px;
                width: 300px;
                background: rgba(0, 0, 0, 0.85);
                color: white;
                padding: 15px;
                border-radius: 8px;
                font-family: monospace;
                font-size: 12px;
                z-index: 2147483647;
                pointer-events: none;
                transition: opacity 0.3s;
                opacity: 0;
            }
            #agent-step-overlay.active { opacity: 1; }
            #agent-step-overlay.success { background: rgba(0, 255, 149, 0.95); color: #000; }
            #agent-step-overlay.error { background: rgba(255, 20, 97, 0.95); }
            #agent-step-overlay .step-type {
                color: #00ff95;
                font-weight: bold;
                margin-bottom: 8px;
                text-transform: uppercase;
                font-size: 10px;
            }
            #agent-step-overlay .coordinates { color: #ffcc00; font-size: 11px; opacity: 0.8; }
        `;
        document.head.appendChild(style);
        document.body.appendChild(overlay);

        window.updateOverlay = (data) => {
            clearTimeout(hideTimeout);
            overlay.innerHTML = '';
            overlay.className = data.variant || '';
            if (data.stepType) {
                const el = document.createElement('div');
                el.className = 'step-type';
                el.textContent = 'Step: ' + data.stepType;
                overlay.appendChild(el);
            }
            if (data.message) {
                const el = document.createElement('div');
                el.textContent = data.message;
                overlay.appendChild(el);
            }
            if (data.coordinates) {
                const el = document.createElement('div');
                el.className = 'coordinates';
                el.textContent = 'Coordinates: [' + data.coordinates.join(', ') + ']';
                overlay.appendChild(el);
            }
            overlay.classList.add('active');
            hideTimeout = setTimeout(() => overlay.classList.remove('active'), 3000);
        };
    });
})();
"""


class OverlayChannel:
    """Mirrors executor activity into the page"""

    def __init__(self, enabled: bool = True, timeout_s: float = 5.0):
        self.enabled = enabled
        self.timeout_s = timeout_s

    async def install(self, handle: BrowserHandle) -> None:
        """Register the client-side scripts; they run on every new document"""
        if not self.enabled:
            return
        await handle.add_init_script(CURSOR_SCRIPT)
        await handle.add_init_script(BANNER_SCRIPT)

    async def _send(self, handle: Optional[BrowserHandle], payload: dict) -> None:
        if not self.enabled or handle is None:
            return
        expression = (
            "window.updateOverlay && window.updateOverlay("
            f"{json.dumps(payload)}"
            ")"
        )
        try:
            await asyncio.wait_for(handle.evaluate(expression), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Overlay update timed out")
        except Exception as e:
            logger.warning(f"Failed to show overlay: {e}")

    async def show_step(
        self,
        handle: Optional[BrowserHandle],
        step_type: str,
        text: str,
        coordinates: Optional[Sequence[float]] = None,
    ) -> None:
        payload = {'stepType': step_type, 'message': text}
        if coordinates is not None:
            payload['coordinates'] = [round(c) for c in coordinates]
        await self._send(handle, payload)

    async def show_success(self, handle: Optional[BrowserHandle], text: str = "✨ Task completed successfully!") -> None:
        await self._send(handle, {'stepType': 'success', 'message': text, 'variant': 'success'})

    async def show_error(self, handle: Optional[BrowserHandle], text: str = "An error occurred") -> None:
        await self._send(handle, {'stepType': 'error', 'message': text, 'variant': 'error'})
