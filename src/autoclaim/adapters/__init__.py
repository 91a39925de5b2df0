"""Upstream adapters for AutoClaim.

Feed sources implement the FeedSource ABC, are built by the Engine through
FEED_REGISTRY and are driven by a Poller:
    CrunchyrollFeed — newest Crunchyroll episodes (anonymous token)
    U2Feed          — U2 BDMV torrent RSS

Claim clients are called by the daily claim job:
    HoyolabClient   — HoYoLAB daily check-in (cookie auth)
    EndfieldClient  — SKPORT attendance (signed requests)
"""

from src.autoclaim.adapters.crunchyroll import CrunchyrollClient, CrunchyrollFeed
from src.autoclaim.adapters.endfield import EndfieldClient
from src.autoclaim.adapters.hoyolab import HoyolabClient
from src.autoclaim.adapters.u2_feed import U2Feed
from src.autoclaim.base import FeedSource

__all__ = [
    "CrunchyrollClient",
    "CrunchyrollFeed",
    "EndfieldClient",
    "HoyolabClient",
    "U2Feed",
]

# Registry: source_id → feed source class
FEED_REGISTRY: dict[str, type[FeedSource]] = {
    "crunchyroll": CrunchyrollFeed,
    "u2": U2Feed,
}


def get_feed_source(source_id: str) -> type[FeedSource]:
    """Return the feed source class for a given slug.

    Args:
        source_id: e.g. 'crunchyroll', 'u2'

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in FEED_REGISTRY:
        raise KeyError(
            f"No feed source registered for '{source_id}'. "
            f"Available: {list(FEED_REGISTRY)}"
        )
    return FEED_REGISTRY[source_id]
