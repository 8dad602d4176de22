"""
Browser Views - Data shapes exposed by a browser session.
"""

from typing import Any

from pydantic import BaseModel, Field

# Attribute written onto interactive elements during state capture
ELEMENT_INDEX_ATTR = "data-vigil-index"


class TabInfo(BaseModel):
    """One row of the session's tab table."""

    tab_id: str
    target_id: str
    url: str = ""
    title: str = ""


class BrowserStateSummary(BaseModel):
    """
    Point-in-time snapshot of the session, consumed by the agent loop.

    selector_map maps element index to a short description of the element
    (tag, text, attributes). The page carries the same index in a
    data-vigil-index attribute so actions can resolve it back to a handle.
    """

    url: str = ""
    title: str = ""
    tabs: list[TabInfo] = Field(default_factory=list)
    active_tab_id: str | None = None
    pixels_above: int = 0
    pixels_below: int = 0
    selector_map: dict[int, dict[str, Any]] = Field(default_factory=dict)
    browser_errors: list[str] = Field(default_factory=list)
    loading_status: str | None = None
    recent_dialogs: list[str] = Field(default_factory=list)
    screenshot: str | None = None
    is_minimal: bool = False

    def elements_text(self, max_elements: int = 200) -> str:
        """Render the selector map as one line per element."""
        lines = []
        for index, info in list(self.selector_map.items())[:max_elements]:
            tag = info.get("tag", "element")
            text = (info.get("text") or "").strip()
            attrs = " ".join(
                f'{key}="{value}"'
                for key, value in (info.get("attributes") or {}).items()
                if value
            )
            line = f"[{index}]<{tag}"
            if attrs:
                line += f" {attrs}"
            line += f">{text[:80]}</{tag}>"
            lines.append(line)
        return "\n".join(lines)
