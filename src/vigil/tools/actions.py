"""
Core Actions - Browser actions for Vigil agents.

Elements are addressed by the index assigned during state capture, which is
also written onto the element as a data-vigil-index attribute.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from vigil.browser.views import ELEMENT_INDEX_ATTR
from vigil.exceptions import BrowserError
from vigil.tools.registry import ActionResult, action

if TYPE_CHECKING:
    from vigil.agent.filesystem import FileSystem
    from vigil.browser.session import BrowserSession
    from vigil.browser.views import BrowserStateSummary

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 30.0


def _element_locator(session: "BrowserSession", index: int):
    page = session.get_current_page()
    if page is None:
        raise BrowserError("No active tab")
    return page.locator(f'[{ELEMENT_INDEX_ATTR}="{index}"]')


def _element_info(browser_state: "BrowserStateSummary | None", index: int) -> dict | None:
    if browser_state is None:
        return {}
    return browser_state.selector_map.get(index)


@action("Click element by index from the interactive element list")
async def click(
    index: int,
    session: "BrowserSession",
    browser_state: "BrowserStateSummary | None" = None,
) -> ActionResult:
    """Click on an element by its index."""
    element_info = _element_info(browser_state, index)
    if element_info is None:
        return ActionResult.fail(f"Invalid element index: {index}")

    locator = _element_locator(session, index)
    timeout_ms = session.profile.action_timeout * 1000
    try:
        await locator.scroll_into_view_if_needed(timeout=timeout_ms)
        await locator.click(timeout=timeout_ms)
    except Exception as e:
        return ActionResult.fail(f"Click failed: {e}")

    return ActionResult.ok(f"Clicked element {index}", element=element_info)


@action("Type text into element by index")
async def type_text(
    index: int,
    text: str,
    session: "BrowserSession",
    browser_state: "BrowserStateSummary | None" = None,
    clear: bool = True,
) -> ActionResult:
    """Type text into an input element."""
    element_info = _element_info(browser_state, index)
    if element_info is None:
        return ActionResult.fail(f"Invalid element index: {index}")

    locator = _element_locator(session, index)
    timeout_ms = session.profile.action_timeout * 1000
    try:
        await locator.scroll_into_view_if_needed(timeout=timeout_ms)
        if clear:
            await locator.fill(text, timeout=timeout_ms)
        else:
            await locator.press_sequentially(text, timeout=timeout_ms)
    except Exception as e:
        return ActionResult.fail(f"Type failed: {e}")

    # text may hold substituted secrets, so only its length is reported
    return ActionResult.ok(f"Typed {len(text)} characters into element {index}", element=element_info)


@action("Navigate to a URL")
async def navigate(
    url: str,
    session: "BrowserSession",
    new_tab: bool = False,
) -> ActionResult:
    """Navigate to a URL."""
    tab = await session.navigate(url, new_tab=new_tab)
    return ActionResult.ok(f"Navigated to {url}", url=tab.url, tab_id=tab.tab_id)


@action("Go back to previous page")
async def go_back(session: "BrowserSession") -> ActionResult:
    """Go back in browser history."""
    tab = await session.go_back()
    return ActionResult.ok("Went back", url=tab.url)


@action("Scroll the page")
async def scroll(
    direction: str,
    session: "BrowserSession",
    amount: int = 500,
) -> ActionResult:
    """
    Scroll the page.

    Args:
        direction: 'up', 'down', 'left', 'right'
        amount: Scroll amount in pixels
    """
    scroll_code = {
        "up": f"window.scrollBy(0, -{amount})",
        "down": f"window.scrollBy(0, {amount})",
        "left": f"window.scrollBy(-{amount}, 0)",
        "right": f"window.scrollBy({amount}, 0)",
    }

    if direction not in scroll_code:
        return ActionResult.fail(f"Invalid direction: {direction}")

    await session.execute_js(scroll_code[direction])
    return ActionResult.ok(f"Scrolled {direction} by {amount}px")


@action("Press a keyboard key (e.g. 'Enter', 'Tab', 'Escape', 'Control+A')")
async def press_key(
    key: str,
    session: "BrowserSession",
) -> ActionResult:
    """Press a keyboard key on the focused page."""
    page = session.get_current_page()
    if page is None:
        raise BrowserError("No active tab")

    try:
        await page.keyboard.press(key)
    except Exception as e:
        return ActionResult.fail(f"Key press failed: {e}")
    return ActionResult.ok(f"Pressed {key}")


@action("Open a new tab, optionally at a URL")
async def new_tab(
    session: "BrowserSession",
    url: str = "about:blank",
) -> ActionResult:
    tab = await session.new_tab(url)
    return ActionResult.ok(f"Opened tab {tab.tab_id}", tab_id=tab.tab_id, url=tab.url)


@action("Switch to a tab by its tab_id")
async def switch_tab(
    tab_id: str,
    session: "BrowserSession",
) -> ActionResult:
    tab = await session.switch_tab(tab_id)
    return ActionResult.ok(f"Switched to tab {tab_id}", url=tab.url)


@action("Close a tab by its tab_id")
async def close_tab(
    tab_id: str,
    session: "BrowserSession",
) -> ActionResult:
    await session.close_tab(tab_id)
    return ActionResult.ok(f"Closed tab {tab_id}")


@action("Wait for a specified time")
async def wait(seconds: float = 1.0) -> ActionResult:
    """Wait for specified seconds."""
    seconds = max(0.0, min(seconds, MAX_WAIT_SECONDS))
    await asyncio.sleep(seconds)
    return ActionResult.ok(f"Waited {seconds}s")


@action("Execute JavaScript code")
async def execute_js(
    code: str,
    session: "BrowserSession",
) -> ActionResult:
    """Execute JavaScript in the page."""
    result = await session.execute_js(code)
    return ActionResult.ok(str(result) if result else "", result=result)


@action("Take a screenshot")
async def screenshot(
    session: "BrowserSession",
    full_page: bool = False,
) -> ActionResult:
    """Take a screenshot of the current page."""
    data = await session.screenshot(full_page=full_page)
    return ActionResult.ok("Screenshot captured", size=len(data))


@action("Write text to a file in the agent's workspace")
async def write_file(
    file_name: str,
    content: str,
    file_system: "FileSystem",
    append: bool = False,
) -> ActionResult:
    if file_system is None:
        return ActionResult.fail("No file system available")

    ok = file_system.append_file(file_name, content) if append else file_system.write_file(file_name, content)
    if not ok:
        return ActionResult.fail(f"Could not write {file_name}")
    return ActionResult.ok(f"{'Appended to' if append else 'Wrote'} {file_name}")


@action("Read a file from the agent's workspace")
async def read_file(
    file_name: str,
    file_system: "FileSystem",
) -> ActionResult:
    if file_system is None:
        return ActionResult.fail("No file system available")

    content = file_system.read_file(file_name)
    if content is None:
        return ActionResult.fail(f"File not found: {file_name}")
    return ActionResult.ok(content, file_name=file_name)


@action("Mark task as complete")
async def done(message: str = "Task completed", success: bool = True) -> ActionResult:
    """Mark the current task as complete."""
    return ActionResult.ok(message, done=True, task_success=success)
