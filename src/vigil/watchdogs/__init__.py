"""
Vigil Watchdogs Module.

Observers bound to a browser session that keep it healthy and observable.
"""

from vigil.watchdogs.base import BaseWatchdog
from vigil.watchdogs.crash import CrashWatchdog
from vigil.watchdogs.network import NetworkWatchdog
from vigil.watchdogs.permissions import PermissionsWatchdog
from vigil.watchdogs.popups import PopupsWatchdog
from vigil.watchdogs.security import SecurityWatchdog

__all__ = [
    "BaseWatchdog",
    "CrashWatchdog",
    "NetworkWatchdog",
    "PermissionsWatchdog",
    "PopupsWatchdog",
    "SecurityWatchdog",
]
