"""
Tests for rating themes and sentiment breakdowns.
"""
import pytest

from reviewrag.insights import analyze_sentiment, extract_themes
from tests.conftest import make_candidate


def with_ratings(ratings):
    return [make_candidate(i, 0.9, rating=r) for i, r in enumerate(ratings, start=1)]


class TestSentiment:
    """Ratings >= 4 are positive, 3 neutral, <= 2 negative."""

    def test_mixed_ratings(self):
        s = analyze_sentiment(with_ratings([5, 5, 4, 3, 2, 1]))

        assert (s.positive, s.neutral, s.negative) == (3, 1, 2)
        assert s.positive_pct == pytest.approx(50.0)
        assert round(s.neutral_pct, 1) == 16.7
        assert round(s.negative_pct, 1) == 33.3

    @pytest.mark.parametrize("ratings", [[], [3], [1, 1, 1], [5, 4, 3, 2, 1, 4, 4]])
    def test_buckets_sum_to_count(self, ratings):
        s = analyze_sentiment(with_ratings(ratings))

        assert s.positive + s.neutral + s.negative == len(ratings)

    def test_empty_is_all_zeros(self):
        s = analyze_sentiment([])

        assert s.to_dict() == {
            "positive": 0, "neutral": 0, "negative": 0,
            "positive_pct": 0.0, "neutral_pct": 0.0, "negative_pct": 0.0,
        }


class TestThemes:
    """Themes summarize ratings, versions and platforms."""

    def test_histogram_average_and_platforms(self):
        cands = [
            make_candidate(1, 0.9, rating=5, platform="ios"),
            make_candidate(2, 0.8, rating=5, platform="android"),
            make_candidate(3, 0.7, rating=2, platform="ios"),
        ]

        t = extract_themes(cands)

        assert t.count == 3
        assert t.avg_rating == pytest.approx(4.0)
        assert t.rating_histogram == {1: 0, 2: 1, 3: 0, 4: 0, 5: 2}
        assert t.platforms == {"ios": 2, "android": 1}

    def test_top_versions_by_frequency_with_first_seen_ties(self):
        versions = ["1.0", "2.0", "3.0", "2.0", "4.0", "3.0", None]
        cands = [make_candidate(i, 0.9, app_version=v) for i, v in enumerate(versions, start=1)]

        t = extract_themes(cands)

        assert t.top_versions == ["2.0", "3.0", "1.0"]

    def test_empty_input(self):
        t = extract_themes([])

        assert t.count == 0
        assert t.avg_rating == 0.0
        assert t.rating_histogram == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
        assert t.top_versions == []

    def test_counts_agree_with_sentiment(self):
        cands = with_ratings([4, 2, 3, 5])

        assert extract_themes(cands).count == analyze_sentiment(cands).total == len(cands)
