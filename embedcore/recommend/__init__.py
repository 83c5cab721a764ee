"""Model recommendation for embedcore.

Example:
    >>> from embedcore.device import detect_device_capabilities
    >>> from embedcore.recommend import ModelRecommender
    >>> ModelRecommender().recommend(detect_device_capabilities(), "embedding")
"""

from .lib import TIER_MATCH_POINTS, ModelRecommender, ScoredModel

__all__ = [
    "ModelRecommender",
    "ScoredModel",
    "TIER_MATCH_POINTS",
]
