"""
Tests for the class pricing calculator.
"""
import pytest

from portal_backend.app.pricing import (
    calculate_class_cost,
    calculate_duration_hours,
    describe_pricing_model,
    format_price,
    pricing_fields_for,
    validate_pricing_data,
)


class TestCalculateClassCost:
    """Cost per pricing model."""

    def test_per_person_multiplies_enrollment(self):
        cls = {"pricing_model": "per_person", "cost_per_person": 25}
        assert calculate_class_cost(cls, 4) == 100.0

    def test_per_person_without_rate_is_zero(self):
        assert calculate_class_cost({"pricing_model": "per_person"}, 10) == 0.0

    def test_per_class_ignores_enrollment(self):
        cls = {"pricing_model": "per_class", "base_cost": "150.00"}
        assert calculate_class_cost(cls, 0) == 150.0
        assert calculate_class_cost(cls, 30) == 150.0

    def test_per_hour_uses_duration(self):
        cls = {
            "pricing_model": "per_hour",
            "cost_per_hour": 60,
            "start_time": "2026-03-01T10:00:00Z",
            "end_time": "2026-03-01T11:30:00Z",
        }
        assert calculate_class_cost(cls) == pytest.approx(90.0)

    def test_per_hour_with_bad_times_is_zero(self):
        cls = {"pricing_model": "per_hour", "cost_per_hour": 60, "start_time": "nope", "end_time": None}
        assert calculate_class_cost(cls) == 0.0

    def test_tiered_below_threshold_is_base(self):
        cls = {
            "pricing_model": "tiered",
            "base_cost": 100,
            "tiered_base_students": 5,
            "tiered_additional_cost": 15,
        }
        assert calculate_class_cost(cls, 3) == 100.0

    def test_tiered_above_threshold_adds_extra(self):
        cls = {
            "pricing_model": "tiered",
            "base_cost": 100,
            "tiered_base_students": 5,
            "tiered_additional_cost": 15,
        }
        assert calculate_class_cost(cls, 8) == 145.0

    def test_tiered_missing_tier_fields_count_as_zero(self):
        cls = {"pricing_model": "tiered", "base_cost": 80}
        assert calculate_class_cost(cls, 6) == 80.0

    def test_unknown_model_is_zero(self):
        assert calculate_class_cost({"pricing_model": "barter", "base_cost": 50}, 2) == 0.0

    def test_never_negative(self):
        cls = {"pricing_model": "per_class", "base_cost": -20}
        assert calculate_class_cost(cls) == 0.0

    def test_negative_enrollment_treated_as_zero(self):
        cls = {"pricing_model": "per_person", "cost_per_person": 10}
        assert calculate_class_cost(cls, -3) == 0.0


class TestDuration:
    def test_hours_between(self):
        assert calculate_duration_hours("2026-01-01T09:00:00+00:00", "2026-01-01T10:15:00+00:00") == 1.25

    def test_missing_is_zero(self):
        assert calculate_duration_hours(None, "2026-01-01T10:00:00Z") == 0.0


class TestValidatePricingData:
    def test_unknown_model_rejected(self):
        valid, err = validate_pricing_data("barter", {})
        assert not valid
        assert "pricing_model" in err

    @pytest.mark.parametrize("model,field", [
        ("per_person", "cost_per_person"),
        ("per_class", "base_cost"),
        ("per_hour", "cost_per_hour"),
    ])
    def test_single_field_models_need_positive_value(self, model, field):
        assert validate_pricing_data(model, {field: 0})[0] is False
        assert validate_pricing_data(model, {field: 12.5}) == (True, None)

    def test_tiered_requires_base_students(self):
        valid, err = validate_pricing_data("tiered", {"base_cost": 100, "tiered_additional_cost": 10})
        assert not valid
        assert "Base number of students" in err

    def test_tiered_allows_zero_additional_cost(self):
        data = {"base_cost": 100, "tiered_base_students": 4, "tiered_additional_cost": 0}
        assert validate_pricing_data("tiered", data) == (True, None)

    def test_tiered_rejects_missing_additional_cost(self):
        data = {"base_cost": 100, "tiered_base_students": 4}
        assert validate_pricing_data("tiered", data)[0] is False


class TestPresentation:
    def test_format_price(self):
        assert format_price(1234.5) == "$1,234.50"
        assert format_price(None) == "$0.00"

    def test_describe_tiered(self):
        cls = {"pricing_model": "tiered", "base_cost": 100, "tiered_base_students": 1, "tiered_additional_cost": 20}
        assert describe_pricing_model(cls) == "$100.00 for first 1 student, then $20.00 per additional student"

    def test_describe_without_price(self):
        assert describe_pricing_model({"pricing_model": "per_hour"}) == "No pricing set"

    def test_pricing_fields_for_nulls_inactive_fields(self):
        fields = pricing_fields_for("per_class", {"base_cost": "99", "cost_per_person": 10})
        assert fields["base_cost"] == 99.0
        assert fields["cost_per_person"] is None
        assert fields["tiered_base_students"] is None


class TestDocumentedExamples:
    def test_tiered_example(self):
        cls = {"pricing_model": "tiered", "base_cost": 50, "tiered_base_students": 3, "tiered_additional_cost": 10}
        assert calculate_class_cost(cls, 5) == 70.0

    def test_per_hour_example(self):
        cls = {
            "pricing_model": "per_hour",
            "cost_per_hour": 40,
            "start_time": "2026-05-01T18:00:00Z",
            "end_time": "2026-05-01T19:30:00Z",
        }
        assert calculate_class_cost(cls) == 60.0

    @pytest.mark.parametrize("cls", [{}, {"pricing_model": None}, {"pricing_model": "mystery", "cost_per_hour": "x"}])
    def test_unknown_never_raises(self, cls):
        assert calculate_class_cost(cls, 3) == 0.0
