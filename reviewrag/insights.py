"""Aggregate statistics over a retrieved set of reviews.

- extract_themes: count, average rating, rating histogram over 1..5, the three most
  frequent app versions, and per-platform counts.
- analyze_sentiment: positive (rating >= 4), neutral (== 3) and negative (<= 2) buckets.

Both accept any sequence of similarity candidates (objects with a ``review`` attribute)
and return all-zero results for an empty input.
"""
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Sequence

RATING_DOMAIN = (1, 2, 3, 4, 5)
TOP_VERSIONS = 3


@dataclass
class ReviewThemes:
    count: int = 0
    avg_rating: float = 0.0
    rating_histogram: Dict[int, int] = field(default_factory=lambda: {r: 0 for r in RATING_DOMAIN})
    top_versions: List[str] = field(default_factory=list)
    platforms: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SentimentBreakdown:
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    positive_pct: float = 0.0
    neutral_pct: float = 0.0
    negative_pct: float = 0.0

    @property
    def total(self) -> int:
        return self.positive + self.neutral + self.negative

    def to_dict(self) -> dict:
        return asdict(self)


def extract_themes(candidates: Sequence) -> ReviewThemes:
    """Summarize ratings, versions and platforms of the retrieved reviews.

    Versions are ranked by descending frequency; ties keep first-seen order.
    """
    themes = ReviewThemes()
    if not candidates:
        return themes

    versions: Counter = Counter()
    platforms: Counter = Counter()
    total_rating = 0
    for c in candidates:
        r = c.review
        if r.rating in themes.rating_histogram:
            themes.rating_histogram[r.rating] += 1
        total_rating += r.rating
        if r.app_version:
            versions[r.app_version] += 1
        platforms[r.platform] += 1

    themes.count = len(candidates)
    themes.avg_rating = total_rating / len(candidates)
    # most_common sorts stably, so equal counts stay in insertion (first-seen) order
    themes.top_versions = [v for v, _ in versions.most_common(TOP_VERSIONS)]
    themes.platforms = dict(platforms)
    return themes


def analyze_sentiment(candidates: Sequence) -> SentimentBreakdown:
    out = SentimentBreakdown()
    if not candidates:
        return out
    for c in candidates:
        rating = c.review.rating
        if rating >= 4:
            out.positive += 1
        elif rating == 3:
            out.neutral += 1
        else:
            out.negative += 1
    n = len(candidates)
    out.positive_pct = out.positive / n * 100
    out.neutral_pct = out.neutral / n * 100
    out.negative_pct = out.negative / n * 100
    return out
