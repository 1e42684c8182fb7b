"""
Regional restock monitoring engine.

This package contains modules for fetching regional storefront listings,
reconciling them with stored product state, matching restocks against user
filters, dispatching notifications and coordinating the scan cycles.
See DESIGN.md for details.
"""

__all__ = [
    "config",
    "control",
    "db",
    "differ",
    "dispatcher",
    "emailer",
    "fetcher",
    "main",
    "matcher",
    "models",
    "notifier",
    "repository",
    "scan_log",
    "scheduler",
    "utils",
]
