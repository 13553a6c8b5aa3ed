"""
Presence discovery.

Inbound announcements that trigger certificate fetches.
"""

from .presence import Announcement, parse_announcement, format_announcement

__all__ = [
    "Announcement",
    "parse_announcement",
    "format_announcement",
]
