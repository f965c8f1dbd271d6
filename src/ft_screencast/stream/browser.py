"""
Browser Process
===============

Launches a headless Chrome/Chromium instance with remote debugging
enabled and locates the DevTools websocket of its page target.

Design Rules:
    - The browser lives exactly as long as the BrowserProcess object is
      open; close() always terminates it
    - Each launch uses a throwaway profile directory
    - stderr is drained continuously so the browser never blocks on a
      full pipe
"""

import asyncio
import logging
import re
import shutil
import tempfile
from typing import List, Optional, Sequence

import requests


logger = logging.getLogger(__name__)


BROWSER_CANDIDATES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
)

_DEVTOOLS_PATTERN = re.compile(r"DevTools listening on (ws://(\S+?):(\d+)/\S*)")


class BrowserError(Exception):
    """Raised when the browser cannot be launched or inspected."""
    pass


def find_browser(executable: Optional[str] = None) -> str:
    """
    Resolve the browser executable.

    Args:
        executable: Explicit path or command name. If None, common
            Chrome/Chromium names are searched on PATH.

    Raises:
        BrowserError: If no browser executable can be found
    """
    candidates = [executable] if executable else list(BROWSER_CANDIDATES)
    for candidate in candidates:
        path = shutil.which(candidate)
        if path:
            return path
    raise BrowserError(
        f"No browser executable found (tried: {', '.join(candidates)})"
    )


def parse_devtools_line(line: str) -> Optional[tuple]:
    """
    Extract (ws_url, host, port) from a "DevTools listening on" line.

    Returns:
        Tuple of (ws_url, host, port) or None if the line doesn't match
    """
    match = _DEVTOOLS_PATTERN.search(line)
    if match is None:
        return None
    return match.group(1), match.group(2), int(match.group(3))


def select_page_target(targets: list) -> Optional[str]:
    """Return the websocket URL of the first page target, if any."""
    for target in targets:
        if target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
            return target["webSocketDebuggerUrl"]
    return None


class BrowserProcess:
    """
    Managed Chrome/Chromium process.

    Attributes:
        width: Window width in pixels
        height: Window height in pixels
        headless: Run without a visible window

    Example:
        browser = BrowserProcess(width=45, height=35)
        try:
            ws_url = await browser.start()
            ...
        finally:
            await browser.close()
    """

    def __init__(
        self,
        width: int,
        height: int,
        executable: Optional[str] = None,
        headless: bool = True,
        startup_timeout: float = 20.0,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.width = width
        self.height = height
        self.executable = executable
        self.headless = headless
        self.startup_timeout = startup_timeout
        self.extra_args = list(extra_args)

        self._process: Optional[asyncio.subprocess.Process] = None
        self._profile_dir: Optional[tempfile.TemporaryDirectory] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def build_args(self, executable: str, profile_dir: str) -> List[str]:
        """Command line used to launch the browser."""
        args = [
            executable,
            "--remote-debugging-port=0",
            f"--user-data-dir={profile_dir}",
            f"--window-size={self.width},{self.height}",
            "--no-first-run",
            "--no-default-browser-check",
            "--hide-scrollbars",
            "--mute-audio",
        ]
        if self.headless:
            args.append("--headless=new")
        args.extend(self.extra_args)
        args.append("about:blank")
        return args

    async def start(self) -> str:
        """
        Launch the browser and return its page target websocket URL.

        Raises:
            BrowserError: If the browser fails to start or exposes no page
        """
        executable = find_browser(self.executable)
        self._profile_dir = tempfile.TemporaryDirectory(prefix="ft-screencast-")
        args = self.build_args(executable, self._profile_dir.name)

        mode = "headless" if self.headless else "windowed"
        logger.info(
            f"starting {executable} in {mode} mode with dimensions "
            f"{self.width}x{self.height}"
        )
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BrowserError(f"Failed to launch browser: {e}")

        try:
            _, host, port = await asyncio.wait_for(
                self._wait_for_devtools(), timeout=self.startup_timeout
            )
        except asyncio.TimeoutError:
            raise BrowserError(
                f"Browser did not expose DevTools within {self.startup_timeout:.0f}s"
            )

        self._stderr_task = asyncio.create_task(
            self._drain_stderr(), name="browser_stderr"
        )

        ws_url = await asyncio.to_thread(self._find_page_target, host, port)
        logger.info(f"started browser with process id {self.pid}")
        return ws_url

    async def _wait_for_devtools(self) -> tuple:
        assert self._process is not None and self._process.stderr is not None
        while True:
            raw = await self._process.stderr.readline()
            if not raw:
                code = await self._process.wait()
                raise BrowserError(f"Browser exited during startup (code {code})")
            line = raw.decode(errors="replace").rstrip()
            logger.debug(f"browser: {line}")
            parsed = parse_devtools_line(line)
            if parsed is not None:
                return parsed

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            raw = await self._process.stderr.readline()
            if not raw:
                return
            logger.debug(f"browser: {raw.decode(errors='replace').rstrip()}")

    def _find_page_target(self, host: str, port: int) -> str:
        """Query the DevTools HTTP endpoint for a page target."""
        base = f"http://{host}:{port}"
        try:
            response = requests.get(f"{base}/json/list", timeout=5)
            response.raise_for_status()
            ws_url = select_page_target(response.json())
            if ws_url:
                return ws_url

            response = requests.put(f"{base}/json/new?about:blank", timeout=5)
            response.raise_for_status()
            ws_url = response.json().get("webSocketDebuggerUrl")
        except (requests.RequestException, ValueError) as e:
            raise BrowserError(f"Could not open new tab: {e}")

        if not ws_url:
            raise BrowserError("Could not open new tab: no page target available")
        return ws_url

    async def close(self) -> None:
        """Terminate the browser and remove its profile directory."""
        process = self._process
        self._process = None

        if process is not None and process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning(f"Browser {process.pid} did not exit, killing it")
                process.kill()
                await process.wait()
            logger.info(f"Browser {process.pid} stopped")

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

        if self._profile_dir is not None:
            self._profile_dir.cleanup()
            self._profile_dir = None

    async def __aenter__(self) -> "BrowserProcess":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
