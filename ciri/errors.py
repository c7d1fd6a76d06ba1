"""
Error Types Module

Failures raised by the dedup cache and the gallery client.
None of these are meant to abort the bot: callers log them and degrade.
"""

from __future__ import annotations


class CiriError(Exception):
    """Base class for all ciri errors."""


class CacheLoadError(CiriError):
    """Cache file missing, unreadable or not matching the expected schema."""


class CacheSaveError(CiriError):
    """Cache snapshot could not be serialized or written."""


class CapacityInvariantViolation(CiriError, AssertionError):
    """A dedup set broke its size/index invariant. Always a bug."""


class GalleryError(CiriError):
    """Gallery API request or response parsing failed."""


class NoImageFound(GalleryError):
    """No unseen gallery item left to post."""
