"""
Pytest test module for the weighted Aggregator.

Test Categories:
- TestWeightedRates: Ratio-of-sums rates, the 44.0 scenario, unequal sizes
- TestEmptyAndZero: Empty input and zero denominators give None
- TestAggregateMetric: Metric lookup on an aggregate
"""

from datetime import datetime, timezone

import pytest

from backend.models import DateWindow, MetricName
from backend.services.aggregation import aggregate, aggregate_metric, safe_ratio
from backend.tests.conftest import make_post


class TestWeightedRates:
    """Tests that rates are ratios of sums, never means of rates."""

    def test_scenario_open_rate_is_44(self, scenario_posts):
        result = aggregate(scenario_posts)

        assert result.openRate == pytest.approx(44.0)
        assert result.delivered == 5000
        assert result.uniqueOpens == 2200
        assert result.count == 4

    def test_weighted_differs_from_mean_of_rates(self):
        posts = [
            make_post('2024-01-01', delivered=100, uniqueOpens=90),
            make_post('2024-01-02', delivered=900, uniqueOpens=90),
        ]
        weighted = aggregate(posts).openRate
        mean_of_rates = (90 / 100 * 100 + 90 / 900 * 100) / 2

        assert weighted == pytest.approx(18.0)
        assert weighted != pytest.approx(mean_of_rates)

    def test_ctr_and_delivery_rate(self, scenario_posts):
        result = aggregate(scenario_posts)

        assert result.ctr == pytest.approx(310 / 2200 * 100)
        assert result.deliveryRate == pytest.approx(5000 / 5020 * 100)
        assert result.avgUniqueClicks == pytest.approx(310 / 4)

    def test_window_restricts_posts(self, scenario_posts):
        window = DateWindow(
            start=datetime(2024, 2, 1, tzinfo=timezone.utc),
            end=datetime(2024, 2, 29, tzinfo=timezone.utc),
        )
        result = aggregate(scenario_posts, window)

        assert result.count == 2
        assert result.openRate == pytest.approx(35.0)


class TestEmptyAndZero:
    """Tests for None on zero denominators."""

    def test_empty_aggregate(self):
        result = aggregate([])

        assert result.count == 0
        for name in ('sent', 'delivered', 'totalOpens', 'uniqueOpens',
                     'uniqueClicks', 'verifiedClicks', 'unsubscribed'):
            assert getattr(result, name) == 0
        for name in ('openRate', 'ctr', 'verifiedCtr', 'deliveryRate',
                     'avgUniqueClicks', 'avgVerifiedClicks'):
            assert getattr(result, name) is None

    def test_zero_delivered_gives_none_open_rate(self):
        result = aggregate([make_post('2024-01-01', sent=100, uniqueOpens=0)])

        assert result.openRate is None
        assert result.ctr is None
        assert result.deliveryRate == 0.0

    def test_safe_ratio(self):
        assert safe_ratio(1, 0) is None
        assert safe_ratio(1, 4) == 25.0
        assert safe_ratio(6, 3, scale=1.0) == 2.0


class TestAggregateMetric:
    """Tests for reading one metric off an aggregate."""

    def test_rate_and_count(self, scenario_posts):
        result = aggregate(scenario_posts)

        assert aggregate_metric(result, MetricName.OPEN_RATE) == pytest.approx(44.0)
        assert aggregate_metric(result, MetricName.UNIQUE_CLICKS) == 310.0

    def test_unsubscribe_rate_weighted_by_sent(self):
        posts = [
            make_post('2024-01-01', sent=1000, unsubscribed=10),
            make_post('2024-01-02', sent=3000, unsubscribed=10),
        ]
        assert aggregate_metric(aggregate(posts), MetricName.UNSUBSCRIBE_RATE) == pytest.approx(0.5)

    def test_none_rate_stays_none(self):
        assert aggregate_metric(aggregate([]), MetricName.CTR) is None
