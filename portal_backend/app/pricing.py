# app/pricing.py
"""
Class pricing.

A class carries one of four pricing models and only the fields that model
uses. `calculate_class_cost` never raises: anything missing or malformed
degrades to 0 and the result is never negative.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

from .settings import PRICING_MODELS
from .utils import parse_ts

PRICING_FIELDS = (
    "base_cost",
    "cost_per_person",
    "cost_per_hour",
    "tiered_base_students",
    "tiered_additional_cost",
)

# Fields each model keeps; the rest are nulled on write
MODEL_FIELDS = {
    "per_person": ("cost_per_person",),
    "per_class": ("base_cost",),
    "per_hour": ("cost_per_hour",),
    "tiered": ("base_cost", "tiered_base_students", "tiered_additional_cost"),
}


def _num(value) -> float:
    if value is None or value == "" or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _count(value) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, n)


def calculate_duration_hours(start_time, end_time) -> float:
    """Hours between two timestamps (ISO strings or datetimes); 0 if either is unusable."""
    start, end = parse_ts(start_time), parse_ts(end_time)
    if start is None or end is None:
        return 0.0
    return (end - start).total_seconds() / 3600.0


def calculate_class_cost(class_data: Mapping[str, Any], enrolled_count: int = 0) -> float:
    """Total cost of a class under its pricing model."""
    model = class_data.get("pricing_model")
    enrolled = _count(enrolled_count)

    if model == "per_person":
        per_person = _num(class_data.get("cost_per_person"))
        if not per_person:
            return 0.0
        cost = enrolled * per_person

    elif model == "per_class":
        cost = _num(class_data.get("base_cost"))

    elif model == "per_hour":
        per_hour = _num(class_data.get("cost_per_hour"))
        if not per_hour:
            return 0.0
        hours = calculate_duration_hours(class_data.get("start_time"), class_data.get("end_time"))
        cost = hours * per_hour

    elif model == "tiered":
        base_cost = _num(class_data.get("base_cost"))
        if not base_cost:
            return 0.0
        base_students = _count(class_data.get("tiered_base_students"))
        extra = max(0, enrolled - base_students)
        cost = base_cost + extra * _num(class_data.get("tiered_additional_cost"))

    else:
        return 0.0

    return max(0.0, cost)


def format_price(amount) -> str:
    return f"${_num(amount):,.2f}"


def describe_pricing_model(class_data: Mapping[str, Any]) -> str:
    """Human-readable summary of a class's pricing."""
    model = class_data.get("pricing_model")
    base_cost = _num(class_data.get("base_cost"))
    per_person = _num(class_data.get("cost_per_person"))
    per_hour = _num(class_data.get("cost_per_hour"))

    if model == "per_person":
        return f"{format_price(per_person)} per student" if per_person else "No pricing set"
    if model == "per_class":
        return f"{format_price(base_cost)} flat rate" if base_cost else "No pricing set"
    if model == "per_hour":
        return f"{format_price(per_hour)} per hour" if per_hour else "No pricing set"
    if model == "tiered":
        if not base_cost:
            return "No pricing set"
        base_students = _count(class_data.get("tiered_base_students"))
        plural = "" if base_students == 1 else "s"
        additional = format_price(class_data.get("tiered_additional_cost"))
        return (
            f"{format_price(base_cost)} for first {base_students} student{plural}, "
            f"then {additional} per additional student"
        )
    return "No pricing set"


def validate_pricing_data(model: Optional[str], data: Mapping[str, Any]) -> Tuple[bool, Optional[str]]:
    """Check the fields required by `model`. Returns (valid, error)."""
    if model not in PRICING_MODELS:
        return False, f"pricing_model must be one of: {', '.join(PRICING_MODELS)}"

    def positive(field):
        return _num(data.get(field)) > 0

    if model == "per_person" and not positive("cost_per_person"):
        return False, "Cost per person is required and must be greater than 0"
    if model == "per_class" and not positive("base_cost"):
        return False, "Base cost is required and must be greater than 0"
    if model == "per_hour" and not positive("cost_per_hour"):
        return False, "Cost per hour is required and must be greater than 0"
    if model == "tiered":
        if not positive("base_cost"):
            return False, "Base cost is required and must be greater than 0"
        if _count(data.get("tiered_base_students")) < 1:
            return False, "Base number of students is required and must be at least 1"
        additional = data.get("tiered_additional_cost")
        if additional is None or additional == "" or _num(additional) < 0:
            return False, "Additional cost per student is required and must be 0 or greater"
    return True, None


def pricing_fields_for(model: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Pricing columns to store: the active model's fields, everything else nulled."""
    keep = MODEL_FIELDS.get(model, ())
    out: Dict[str, Any] = {}
    for field in PRICING_FIELDS:
        if field not in keep:
            out[field] = None
        elif field == "tiered_base_students":
            out[field] = _count(data.get(field))
        else:
            out[field] = _num(data.get(field))
    return out
