"""
Vigil Browser Module.

Provides the browser session, its profile and the snapshot views.
"""

from vigil.browser.profile import BrowserProfile
from vigil.browser.session import BrowserSession
from vigil.browser.views import BrowserStateSummary, TabInfo

__all__ = [
    "BrowserProfile",
    "BrowserSession",
    "BrowserStateSummary",
    "TabInfo",
]
