"""Image and event caches."""

from .event_cache import EventCache, validate_source_id
from .image_cache import ImageCache, ImageRejectedError, cache_name
from .url_validator import SSRFError, validate_feed_url, validate_image_url, validate_url

__all__ = [
    "EventCache",
    "ImageCache",
    "ImageRejectedError",
    "SSRFError",
    "cache_name",
    "validate_feed_url",
    "validate_image_url",
    "validate_source_id",
    "validate_url",
]
