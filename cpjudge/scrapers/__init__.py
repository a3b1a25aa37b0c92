"""Per-platform extraction strategies.

The set of platforms is closed: every ``Platform`` member has exactly one
scraper class, registered below. Adding a platform means adding an enum member
and a module; the import fails loudly until both exist.
"""
import logging

from .common import ExtractionTarget, Platform

logger = logging.getLogger(__name__)

_registry = {}


def register_scraper(cls):
    """Decorator to register the extraction strategy of a platform."""
    if cls.PLATFORM in _registry:
        raise RuntimeError(f"Duplicate scraper for platform: {cls.PLATFORM.value}")
    _registry[cls.PLATFORM] = cls
    logger.debug(f"Registered scraper: {cls.PLATFORM.value} ({cls.PLATFORM_DISPLAY})")
    return cls


def get_scraper_class(platform):
    try:
        return _registry.get(Platform(platform))
    except ValueError:
        return None


def get_all_scrapers():
    return dict(_registry)


def get_scraper_instance(platform, **kwargs):
    cls = get_scraper_class(platform)
    if cls is None:
        raise ValueError(f"Unknown platform: {platform}")
    return cls(**kwargs)


def extract(platform, raw: str, target: ExtractionTarget, **context):
    """Parse ``raw`` with the platform's strategy into the structure ``target`` names."""
    return get_scraper_instance(platform).extract(raw, ExtractionTarget(target), **context)


from . import atcoder, codeforces, yukicoder  # noqa: E402,F401

_missing = set(Platform) - set(_registry)
if _missing:
    raise RuntimeError(
        f"No scraper registered for: {sorted(p.value for p in _missing)}"
    )
