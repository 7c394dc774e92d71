"""
Chrome controlled over CDP (Chrome DevTools Protocol).

`BrowserHandle` is the capability surface the rest of the package depends on;
`CDPBrowser` is the implementation that drives a real Chrome process.
"""
import asyncio
import base64
import json
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Any, Dict, Optional, Protocol

import httpx
import websockets

from .models import BrowserState, ElementState, ImageSize, Point

logger = logging.getLogger(__name__)


class BrowserHandle(Protocol):
    """What the executor, overlay and registry need from a live browser"""

    async def set_viewport(self, width: int, height: int) -> None: ...
    async def add_init_script(self, source: str) -> None: ...
    async def navigate(self, url: str) -> None: ...
    async def evaluate(self, expression: str) -> Any: ...
    async def screenshot(self) -> bytes: ...
    async def move(self, x: float, y: float) -> None: ...
    async def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None: ...
    async def mouse_down(self, x: float, y: float, button: str = "left") -> None: ...
    async def mouse_up(self, x: float, y: float, button: str = "left") -> None: ...
    async def type_text(self, text: str) -> None: ...
    async def key_down(self, key: str) -> None: ...
    async def key_up(self, key: str) -> None: ...
    async def key_press(self, key: str) -> None: ...
    async def describe(self) -> BrowserState: ...
    async def close(self) -> None: ...


CHROME_PATHS = [
    '/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',  # macOS
    'google-chrome',  # Linux
    'chromium-browser',  # Linux
    'chromium',  # Linux
    r'C:\Program Files\Google\Chrome\Application\chrome.exe',  # Windows
]

KEY_CODES = {
    'Enter': 13,
    'Tab': 9,
    'Escape': 27,
    'Backspace': 8,
    'Delete': 46,
    ' ': 32,
    'ArrowUp': 38,
    'ArrowDown': 40,
    'ArrowLeft': 37,
    'ArrowRight': 39,
    'Home': 36,
    'End': 35,
    'PageUp': 33,
    'PageDown': 34,
    'Control': 17,
    'Alt': 18,
    'Shift': 16,
    'Meta': 91,
    **{f'Numpad{i}': 96 + i for i in range(10)},
    **{f'F{i}': 111 + i for i in range(1, 13)},
}

# CDP modifier bitmask
MODIFIER_BITS = {'Alt': 1, 'Control': 2, 'Meta': 4, 'Shift': 8}

INTERACTIVE_TAGS = {'a', 'button', 'input', 'textarea', 'select'}
INTERACTIVE_ROLES = {'button', 'link', 'checkbox', 'radio', 'tab', 'menuitem'}


def find_chrome(explicit_path: Optional[str] = None) -> str:
    if explicit_path:
        return explicit_path
    for path in CHROME_PATHS:
        if os.path.exists(path) or shutil.which(path):
            return path
    raise RuntimeError("Chrome/Chromium not found. Please install Chrome.")


class CDPBrowser:
    """A single Chrome process with one page, controlled through CDP"""

    def __init__(
        self,
        headless: bool = True,
        chrome_path: Optional[str] = None,
        navigation_settle_s: float = 2.0,
    ):
        self.headless = headless
        self.chrome_path = chrome_path
        self.navigation_settle_s = navigation_settle_s
        self.chrome_process = None
        self.user_data_dir = None
        self.ws = None
        self.cdp_url = None
        self.session_id = None
        self.target_id = None
        self.message_id = 0
        self._held_modifiers = 0
        # One command in flight at a time per connection
        self._lock = asyncio.Lock()

    async def start(self):
        """Start Chrome and connect via CDP"""
        chrome_path = find_chrome(self.chrome_path)
        self.user_data_dir = tempfile.mkdtemp(prefix='computer_use_agent_')

        chrome_args = [
            chrome_path,
            '--remote-debugging-port=0',  # Chrome picks a free port per session
            f'--user-data-dir={self.user_data_dir}',
            '--no-first-run',
            '--no-default-browser-check',
            '--disable-gpu',
            '--disable-dev-shm-usage',
            '--disable-setuid-sandbox',
            '--no-sandbox',
        ]
        if self.headless:
            chrome_args.append('--headless=new')

        logger.info(f"Starting Chrome from: {chrome_path}")
        self.chrome_process = subprocess.Popen(
            chrome_args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL
        )

        try:
            port = await self._wait_for_devtools_port()
            async with httpx.AsyncClient() as client:
                response = await client.get(f'http://127.0.0.1:{port}/json/version', timeout=3.0)
                self.cdp_url = response.json()['webSocketDebuggerUrl']

            self.ws = await websockets.connect(
                self.cdp_url,
                max_size=20 * 1024 * 1024  # Screenshots can be large
            )

            result = await self._send_command('Target.createTarget', {'url': 'about:blank'})
            self.target_id = result['targetId']
            result = await self._send_command('Target.attachToTarget', {
                'targetId': self.target_id,
                'flatten': True
            })
            self.session_id = result['sessionId']

            await self._send_command('Page.enable', session_id=self.session_id)
            await self._send_command('DOM.enable', session_id=self.session_id)
            await self._send_command('Runtime.enable', session_id=self.session_id)
        except Exception:
            await self.close()
            raise

        logger.info(f"✓ Connected to Chrome on port {port}")

    async def _wait_for_devtools_port(self, max_retries: int = 15) -> int:
        """Chrome writes the port it bound into DevToolsActivePort"""
        port_file = os.path.join(self.user_data_dir, 'DevToolsActivePort')
        for i in range(max_retries):
            await asyncio.sleep(1)
            if self.chrome_process.poll() is not None:
                raise RuntimeError(f"Chrome exited with code {self.chrome_process.returncode}")
            try:
                with open(port_file) as f:
                    return int(f.readline().strip())
            except (OSError, ValueError):
                logger.debug(f"Attempt {i+1}/{max_retries}: Waiting for Chrome...")
        raise RuntimeError(f"Failed to connect to Chrome after {max_retries} attempts")

    async def _send_command(self, method: str, params: Optional[Dict] = None, session_id: Optional[str] = None) -> Any:
        """Send a CDP command and wait for its response"""
        async with self._lock:
            self.message_id += 1
            message_id = self.message_id
            message = {
                'id': message_id,
                'method': method,
                'params': params or {}
            }
            if session_id:
                message['sessionId'] = session_id

            await self.ws.send(json.dumps(message))

            # Events arrive interleaved with responses; skip until ours
            while True:
                data = json.loads(await self.ws.recv())
                if data.get('id') == message_id:
                    if 'error' in data:
                        raise RuntimeError(f"CDP error: {data['error']}")
                    return data.get('result', {})

    async def _page_command(self, method: str, params: Optional[Dict] = None) -> Any:
        return await self._send_command(method, params, session_id=self.session_id)

    # ==============================================================
    # PAGE
    # ==============================================================

    async def set_viewport(self, width: int, height: int) -> None:
        await self._page_command('Emulation.setDeviceMetricsOverride', {
            'width': width,
            'height': height,
            'deviceScaleFactor': 1,
            'mobile': False,
        })

    async def add_init_script(self, source: str) -> None:
        await self._page_command('Page.addScriptToEvaluateOnNewDocument', {'source': source})

    async def navigate(self, url: str) -> None:
        result = await self._page_command('Page.navigate', {'url': url})
        if result.get('errorText'):
            raise RuntimeError(f"Navigation to {url} failed: {result['errorText']}")
        await asyncio.sleep(self.navigation_settle_s)  # Wait for page load

    async def evaluate(self, expression: str) -> Any:
        result = await self._page_command('Runtime.evaluate', {
            'expression': expression,
            'returnByValue': True
        })
        if 'exceptionDetails' in result:
            raise RuntimeError(f"Script error: {result['exceptionDetails'].get('text')}")
        return result.get('result', {}).get('value')

    async def screenshot(self) -> bytes:
        """Capture the viewport as PNG bytes"""
        result = await self._page_command('Page.captureScreenshot', {'format': 'png'})
        return base64.b64decode(result['data'])

    # ==============================================================
    # MOUSE
    # ==============================================================

    async def _mouse_event(self, event_type: str, x: float, y: float, **extra) -> None:
        params = {'type': event_type, 'x': x, 'y': y}
        if self._held_modifiers:
            params['modifiers'] = self._held_modifiers
        params.update(extra)
        await self._page_command('Input.dispatchMouseEvent', params)

    async def move(self, x: float, y: float) -> None:
        await self._mouse_event('mouseMoved', x, y)

    async def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        await self.move(x, y)
        for count in range(1, click_count + 1):
            await self._mouse_event('mousePressed', x, y, button=button, clickCount=count)
            await self._mouse_event('mouseReleased', x, y, button=button, clickCount=count)

    async def mouse_down(self, x: float, y: float, button: str = "left") -> None:
        await self._mouse_event('mousePressed', x, y, button=button, clickCount=1)

    async def mouse_up(self, x: float, y: float, button: str = "left") -> None:
        await self._mouse_event('mouseReleased', x, y, button=button, clickCount=1)

    # ==============================================================
    # KEYBOARD
    # ==============================================================

    async def type_text(self, text: str) -> None:
        for char in text:
            await self._page_command('Input.dispatchKeyEvent', {
                'type': 'char',
                'text': char
            })
            await asyncio.sleep(0.02)  # Small delay between characters

    async def key_down(self, key: str) -> None:
        event_type = 'rawKeyDown' if key in MODIFIER_BITS else 'keyDown'
        await self._dispatch_key_event(event_type, key)
        self._held_modifiers |= MODIFIER_BITS.get(key, 0)

    async def key_up(self, key: str) -> None:
        self._held_modifiers &= ~MODIFIER_BITS.get(key, 0)
        await self._dispatch_key_event('keyUp', key)

    async def key_press(self, key: str) -> None:
        await self.key_down(key)
        await self.key_up(key)

    async def _dispatch_key_event(self, event_type: str, key: str):
        """Dispatch a keyboard event via CDP"""
        params = {'type': event_type}

        if key in KEY_CODES:
            params['key'] = key
            params['code'] = key
            params['windowsVirtualKeyCode'] = KEY_CODES[key]
            params['nativeVirtualKeyCode'] = KEY_CODES[key]
        else:
            # Regular character
            params['key'] = key
            params['code'] = f'Key{key.upper()}' if len(key) == 1 else key
            if event_type == 'keyDown' and not self._held_modifiers:
                params['text'] = key
                params['unmodifiedText'] = key
            params['windowsVirtualKeyCode'] = ord(key.upper()) if len(key) == 1 else 0

        if self._held_modifiers:
            params['modifiers'] = self._held_modifiers

        await self._page_command('Input.dispatchKeyEvent', params)

    # ==============================================================
    # STATE
    # ==============================================================

    async def describe(self) -> BrowserState:
        """Snapshot URL, title, viewport and interactable elements with positions"""
        result = await self._send_command('Target.getTargetInfo', {'targetId': self.target_id})
        target_info = result['targetInfo']

        dom_result = await self._page_command('DOM.getDocument', {
            'depth': -1,  # Get entire tree
            'pierce': True  # Pierce through shadow DOM
        })
        snapshot_result = await self._page_command('DOMSnapshot.captureSnapshot', {
            'computedStyles': [],
            'includeDOMRects': True
        })
        position_map = _positions_from_snapshot(snapshot_result)

        elements = []
        _collect_interactive(dom_result['root'], position_map, elements)
        elements = elements[:100]  # Enough to rank against

        page = await self.evaluate(
            "({w: window.innerWidth, h: window.innerHeight,"
            " active: document.activeElement ? document.activeElement.tagName.toLowerCase() : null})"
        ) or {}

        active = None
        if page.get('active') and page['active'] != 'body':
            active = next((e for e in elements if e.type == page['active']), ElementState(type=page['active']))

        return BrowserState(
            url=target_info.get('url', ''),
            title=target_info.get('title', ''),
            active_element=active,
            visible_elements=elements,
            interactable_elements=[e for e in elements if e.position is not None],
            viewport=ImageSize(width=page.get('w') or 0, height=page.get('h') or 0),
        )

    async def close(self):
        """Close browser"""
        if self.ws:
            try:
                await self.ws.close()
            finally:
                self.ws = None
        if self.chrome_process:
            self.chrome_process.terminate()
            self.chrome_process.wait()
            self.chrome_process = None
        if self.user_data_dir:
            shutil.rmtree(self.user_data_dir, ignore_errors=True)
            self.user_data_dir = None


def _positions_from_snapshot(snapshot_result: Dict) -> Dict[int, Dict[str, float]]:
    """Map backendNodeId -> layout box from a DOMSnapshot capture"""
    position_map = {}
    for doc in snapshot_result.get('documents', []):
        backend_node_ids = doc.get('nodes', {}).get('backendNodeId', [])
        layout = doc.get('layout', {})
        bounds = layout.get('bounds', [])
        # layout.nodeIndex holds indices into the nodes arrays
        for i, snapshot_idx in enumerate(layout.get('nodeIndex', [])):
            if snapshot_idx >= len(backend_node_ids) or i >= len(bounds):
                continue
            bound = bounds[i]
            if len(bound) >= 4 and bound[2] > 0 and bound[3] > 0:
                position_map[backend_node_ids[snapshot_idx]] = {
                    'x': bound[0], 'y': bound[1], 'width': bound[2], 'height': bound[3]
                }
    return position_map


def _node_text(node: Dict) -> str:
    parts = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.get('nodeType') == 3:  # TEXT_NODE
            parts.append(current.get('nodeValue', ''))
        stack.extend(reversed(current.get('children', [])))
    return ' '.join(p.strip() for p in parts if p.strip())


def _collect_interactive(node: Dict, position_map: Dict, out: list, depth: int = 0) -> None:
    if depth > 50:
        return

    if node.get('nodeType') == 1:  # ELEMENT_NODE
        raw = node.get('attributes', [])
        attributes = {raw[i]: raw[i + 1] for i in range(0, len(raw) - 1, 2)}
        tag = node.get('localName', '').lower()
        box = position_map.get(node.get('backendNodeId'))

        is_interactive = (
            tag in INTERACTIVE_TAGS
            or attributes.get('role', '') in INTERACTIVE_ROLES
            or 'onclick' in attributes
        )
        if is_interactive and box:
            text = _node_text(node)[:80] or (
                attributes.get('aria-label')
                or attributes.get('title')
                or attributes.get('placeholder')
                or ''
            )
            out.append(ElementState(
                type=tag,
                text=text,
                # Center of the box is where a click lands
                position=Point(x=box['x'] + box['width'] / 2, y=box['y'] + box['height'] / 2),
                dimensions=ImageSize(width=round(box['width']), height=round(box['height'])),
                attributes={
                    k: v[:100] for k, v in attributes.items()
                    if k in {'id', 'name', 'type', 'href', 'aria-label', 'role'}
                },
            ))

    for child in node.get('children', []):
        _collect_interactive(child, position_map, out, depth + 1)
    for shadow in node.get('shadowRoots', []):
        _collect_interactive(shadow, position_map, out, depth + 1)


async def launch_cdp_browser(headless: bool = True, chrome_path: Optional[str] = None) -> CDPBrowser:
    browser = CDPBrowser(headless=headless, chrome_path=chrome_path)
    await browser.start()
    return browser
