"""Tests for field-level merging, confidence and GMP trends."""

from datetime import date

import pytest

from ipolens.aggregation import FieldCategory, MergePolicy, confidence_for, gmp_trend, merge_records
from ipolens.aggregation.merge import field_categories, values_agree
from ipolens.models import Confidence, GmpData, GmpPoint, GmpTrend, IpoData, SubscriptionData

PRIORITY = ["nse", "groww", "chittorgarh", "investorgain"]


@pytest.fixture
def policy() -> MergePolicy:
    return MergePolicy(priority_for=lambda field: PRIORITY)


def merge_one(records, policy):
    merged = merge_records(records, policy)
    assert len(merged) == 1
    return merged[0]


class TestMergeRecords:
    """Test suite for merge_records."""

    def test_complementary_sources_merge_with_medium_confidence(self, policy):
        """Test two sources that share no compared field."""
        record = merge_one(
            [
                IpoData(source="nse", symbol="ABC", company_name="ABC Technologies Ltd", pe_ratio=35.2),
                GmpData(source="investorgain", company_name="ABC Technologies Limited", gmp=125),
            ],
            policy,
        )

        assert record.symbol == "ABC"
        assert record.company_name == "ABC Technologies Ltd"
        assert record.sources == {"nse", "investorgain"}
        assert record.gmp == 125
        assert record.pe_ratio == 35.2
        assert record.confidence == Confidence.MEDIUM
        assert record.conflicts == []
        assert not record.needs_review

    def test_agreeing_overlap_gives_high_confidence(self, policy):
        """Test values within tolerance count as agreement."""
        record = merge_one(
            [
                IpoData(source="investorgain", company_name="ABC Ltd", price_max=101.0),
                IpoData(source="nse", company_name="ABC Limited", price_max=100.0),
            ],
            policy,
        )

        assert record.price_max == 100.0
        assert record.confidence == Confidence.HIGH

    def test_conflicting_overlap_gives_low_confidence(self, policy):
        """Test that a disagreement keeps the priority value and is recorded."""
        record = merge_one(
            [
                IpoData(source="nse", company_name="ABC Ltd", price_max=100.0),
                IpoData(source="chittorgarh", company_name="ABC Ltd", price_max=120.0),
            ],
            policy,
        )

        assert record.price_max == 100.0
        assert record.confidence == Confidence.LOW
        assert record.conflicts == ["price_max: kept nse=100.0 over chittorgarh=120.0"]
        assert not record.needs_review

    def test_date_disagreement_is_a_conflict(self, policy):
        """Test that identity dates are compared for equality."""
        record = merge_one(
            [
                IpoData(source="nse", company_name="ABC Ltd", open_date=date(2025, 6, 10)),
                IpoData(source="groww", company_name="ABC Ltd", open_date=date(2025, 6, 11)),
            ],
            policy,
        )

        assert record.open_date == date(2025, 6, 10)
        assert record.confidence == Confidence.LOW
        assert "open_date: kept nse=2025-06-10 over groww=2025-06-11" in record.conflicts

    def test_three_sources_are_high_confidence(self, policy):
        """Test that corroboration by three sources outranks a conflict."""
        record = merge_one(
            [
                IpoData(source="nse", company_name="ABC Ltd", price_max=100.0),
                IpoData(source="groww", company_name="ABC Ltd", price_max=130.0),
                GmpData(source="investorgain", company_name="ABC Ltd", gmp=20),
            ],
            policy,
        )

        assert record.confidence == Confidence.HIGH
        assert len(record.conflicts) == 1

    def test_single_source_is_low_confidence(self, policy):
        """Test a record seen by one source only."""
        record = merge_one([IpoData(source="groww", company_name="XYZ Foods", price_max=222.0)], policy)

        assert record.confidence == Confidence.LOW
        assert record.symbol == "XYZFOODS"

    def test_null_never_overrides_a_reported_value(self, policy):
        """Test that a higher-priority source without a value does not blank it."""
        record = merge_one(
            [
                IpoData(source="nse", company_name="ABC Ltd", price_max=None, lot_size=150),
                IpoData(source="investorgain", company_name="ABC Ltd", price_max=100.0),
            ],
            policy,
        )

        assert record.price_max == 100.0
        assert record.lot_size == 150

    def test_subscriptions_are_averaged(self, policy):
        """Test the averaged reducer; averaged fields do not count as overlap."""
        record = merge_one(
            [
                SubscriptionData(source="nse", company_name="ABC Ltd", total=10.0, qib=20.0),
                SubscriptionData(source="chittorgarh", company_name="ABC Ltd", total=15.0),
            ],
            policy,
        )

        assert record.subscription_total == 12.5
        assert record.subscription_qib == 20.0
        assert record.confidence == Confidence.MEDIUM

    def test_subscriptions_by_priority_when_not_averaging(self):
        """Test the priority reducer for subscriptions when averaging is off."""
        policy = MergePolicy(priority_for=lambda field: PRIORITY, average_subscriptions=False)

        record = merge_one(
            [
                SubscriptionData(source="chittorgarh", company_name="ABC Ltd", total=15.0),
                SubscriptionData(source="nse", company_name="ABC Ltd", total=10.0),
            ],
            policy,
        )

        assert record.subscription_total == 10.0
        assert record.confidence == Confidence.LOW

    def test_field_priority_override(self):
        """Test a per-field ranking that differs from the global one."""
        rankings = {"gmp": ["investorgain", "chittorgarh"]}
        policy = MergePolicy(priority_for=lambda field: rankings.get(field, PRIORITY))

        record = merge_one(
            [
                GmpData(source="chittorgarh", company_name="ABC Ltd", gmp=40),
                GmpData(source="investorgain", company_name="ABC Ltd", gmp=41),
            ],
            policy,
        )

        assert record.gmp == 41

    def test_same_source_name_collision_needs_review(self, policy):
        """Test two issuers from one source sharing a join key."""
        record = merge_one(
            [
                IpoData(source="chittorgarh", company_name="ABC Tech Ltd", price_max=100.0),
                IpoData(source="chittorgarh", company_name="ABC Industries Ltd", price_max=450.0),
            ],
            policy,
        )

        assert record.needs_review
        assert record.price_max == 100.0
        assert record.conflicts == ["name collision in chittorgarh: 'ABC Tech Ltd' vs 'ABC Industries Ltd'"]
        assert record.confidence == Confidence.LOW

    def test_same_name_rows_fill_gaps(self, policy):
        """Test that duplicate rows of one issuer complete each other."""
        record = merge_one(
            [
                IpoData(source="chittorgarh", company_name="ABC Ltd", price_max=100.0),
                SubscriptionData(source="chittorgarh", company_name="ABC Ltd", total=3.2),
            ],
            policy,
        )

        assert not record.needs_review
        assert (record.price_max, record.subscription_total) == (100.0, 3.2)

    def test_records_without_key_are_dropped(self, policy):
        """Test that nameless rows never form a group."""
        merged = merge_records(
            [IpoData(source="nse", company_name="", symbol=""), IpoData(source="nse", company_name="ABC Ltd")],
            policy,
        )

        assert [r.symbol for r in merged] == ["ABC"]

    def test_symbol_used_when_name_missing(self, policy):
        """Test that a bare symbol still joins and names the record."""
        merged = merge_records([SubscriptionData(source="nse", symbol="ABCTECH", total=2.0)], policy)

        assert merged[0].symbol == "ABCTECH"
        assert merged[0].company_name == "ABCTECH"


class TestMergeHelpers:
    """Test suite for confidence, agreement and categories."""

    @pytest.mark.parametrize(
        "count,overlapped,conflicted,expected",
        [
            (1, False, False, Confidence.LOW),
            (2, True, False, Confidence.HIGH),
            (2, False, False, Confidence.MEDIUM),
            (2, True, True, Confidence.LOW),
            (3, True, True, Confidence.HIGH),
            (4, False, False, Confidence.HIGH),
        ],
    )
    def test_confidence_ladder(self, count, overlapped, conflicted, expected):
        """Test every rung of the confidence ladder."""
        assert confidence_for(count, overlapped, conflicted) == expected

    def test_values_agree(self):
        """Test relative tolerance for numbers, equality otherwise."""
        assert values_agree(100.0, 104.0)
        assert not values_agree(100.0, 106.0)
        assert values_agree(0, 0)
        assert values_agree("sme", "sme")
        assert not values_agree(date(2025, 6, 10), date(2025, 6, 11))

    def test_field_categories(self):
        """Test the averaging switch for subscription fields."""
        assert field_categories()["subscription_total"] == FieldCategory.AVERAGED
        assert field_categories(average_subscriptions=False)["subscription_total"] == FieldCategory.PRIORITY
        assert field_categories()["status"] == FieldCategory.TEXT
        assert field_categories()["gmp"] == FieldCategory.PRIORITY


class TestGmpTrend:
    """Test suite for GMP trend detection."""

    @pytest.mark.parametrize(
        "current,previous,expected",
        [
            (131, 125, GmpTrend.RISING),
            (130, 125, GmpTrend.STABLE),
            (120, 125, GmpTrend.STABLE),
            (119, 125, GmpTrend.FALLING),
            (None, 125, None),
            (125, None, None),
        ],
    )
    def test_dead_band(self, current, previous, expected):
        """Test the five rupee dead band."""
        assert gmp_trend(current, previous) == expected

    def test_trend_from_unsorted_history(self):
        """Test that history is ordered by date before comparing."""
        from ipolens.aggregation import trend_from_history

        points = [
            GmpPoint(as_of=date(2025, 6, 11), gmp=10),
            GmpPoint(as_of=date(2025, 6, 9), gmp=40),
            GmpPoint(as_of=date(2025, 6, 10), gmp=30),
        ]

        assert trend_from_history(points) == GmpTrend.FALLING
        assert trend_from_history(points[:1]) is None
