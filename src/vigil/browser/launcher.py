"""
Chrome Launcher - Starts a local Chrome with remote debugging enabled.
"""

import asyncio
import logging
import platform
import shutil
import socket
import subprocess
from pathlib import Path

import httpx

from vigil.browser.profile import BrowserProfile
from vigil.exceptions import BrowserError

logger = logging.getLogger(__name__)

DEFAULT_CHROME_ARGS = [
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-extensions",
    "--disable-popup-blocking",
    "--disable-translate",
    "--disable-sync",
]


async def launch_chrome(profile: BrowserProfile) -> tuple[subprocess.Popen, str]:
    """
    Launch Chrome with CDP enabled.

    Returns:
        (process, CDP WebSocket URL)
    """
    port = find_free_port()

    chrome_args = [
        str(profile.executable_path) if profile.executable_path else find_chrome_executable(),
        f"--remote-debugging-port={port}",
        f"--window-size={profile.window_size[0]},{profile.window_size[1]}",
        *DEFAULT_CHROME_ARGS,
    ]

    if profile.headless:
        chrome_args.append("--headless=new")

    if profile.user_data_dir:
        chrome_args.append(f"--user-data-dir={profile.user_data_dir}")

    chrome_args.extend(profile.args)
    chrome_args.append("about:blank")

    logger.debug(f"Launching Chrome: {' '.join(chrome_args[:5])}...")

    process = subprocess.Popen(
        chrome_args,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )

    try:
        ws_url = await wait_for_cdp(port, timeout=profile.launch_timeout)
    except BaseException:
        terminate_chrome(process, force=True)
        raise
    return process, ws_url


async def wait_for_cdp(port: int, timeout: float = 30.0) -> str:
    """Wait for Chrome CDP to become available and return its WebSocket URL."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    url = f"http://localhost:{port}/json/version"

    async with httpx.AsyncClient() as client:
        while loop.time() - start < timeout:
            try:
                response = await client.get(url, timeout=1.0)
                if response.status_code == 200:
                    return response.json()["webSocketDebuggerUrl"]
            except (httpx.HTTPError, KeyError, ValueError):
                pass
            await asyncio.sleep(0.1)

    raise BrowserError(f"Chrome CDP not available after {timeout}s")


async def resolve_ws_url(cdp_url: str) -> str:
    """Turn an http://host:port endpoint into the browser WebSocket URL."""
    if cdp_url.startswith(("ws://", "wss://")):
        return cdp_url

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{cdp_url.rstrip('/')}/json/version", timeout=5.0)
            response.raise_for_status()
            return response.json()["webSocketDebuggerUrl"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise BrowserError(f"Could not resolve CDP WebSocket URL from {cdp_url}: {e}") from e


def terminate_chrome(process: subprocess.Popen | None, force: bool = False) -> None:
    """Stop a Chrome process started by launch_chrome."""
    if process is None or process.poll() is not None:
        return

    if force:
        process.kill()
        return

    try:
        process.terminate()
        process.wait(timeout=5)
    except Exception as e:
        logger.warning(f"Error terminating Chrome: {e}")
        process.kill()


def find_free_port() -> int:
    """Find a free port for CDP."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        return s.getsockname()[1]


def find_chrome_executable() -> str:
    """Find Chrome executable path."""
    system = platform.system()

    if system == "Darwin":
        paths = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    elif system == "Linux":
        paths = [
            "google-chrome",
            "google-chrome-stable",
            "chromium",
            "chromium-browser",
        ]
    elif system == "Windows":
        paths = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        ]
    else:
        paths = []

    for path in paths:
        if Path(path).exists() or shutil.which(path):
            return path

    raise BrowserError("Chrome not found. Install Chrome or set executable_path in the browser profile.")
