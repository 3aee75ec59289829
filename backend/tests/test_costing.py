"""
Cost arithmetic and the whole-unit rounding policy.
"""

from decimal import Decimal

import pytest

from muralla.services.costing_service import (
    compute_batch_cost,
    line_cost,
    quantize_cost,
    quantize_money,
    to_decimal,
)
from muralla.services.stock_service import rounding_policy, to_stock_units


class TestBatchCost:

    def test_rollup(self):
        cost = compute_batch_cost(Decimal("50"), 8, labor_cost=Decimal("10"), overhead_cost=Decimal("5"))
        assert cost.total_cost == Decimal("65")
        assert cost.cost_per_unit == Decimal("8.125")
        assert cost.total_cost == cost.ingredient_cost + cost.labor_cost + cost.overhead_cost

    def test_missing_parts_are_zero(self):
        cost = compute_batch_cost(None, 4)
        assert cost.total_cost == Decimal("0")
        assert cost.cost_per_unit == Decimal("0")

    def test_per_unit_rounds_to_four_places(self):
        cost = compute_batch_cost(Decimal("10"), 3)
        assert cost.cost_per_unit == Decimal("3.3333")

    def test_to_dict_uses_strings(self):
        data = compute_batch_cost(Decimal("1"), 1).to_dict()
        assert data["total_cost"] == "1.0000"


class TestArithmetic:

    def test_line_cost_with_fractional_quantity(self):
        assert line_cost(Decimal("1000"), Decimal("0.2")) == Decimal("200")

    def test_line_cost_without_basis_is_zero(self):
        assert line_cost(None, 5) == Decimal("0")

    def test_money_rounds_half_up(self):
        assert quantize_money(Decimal("0.125")) == Decimal("0.13")
        assert quantize_money(Decimal("2.675")) == Decimal("2.68")

    def test_cost_rounds_half_up(self):
        assert quantize_cost(Decimal("0.00005")) == Decimal("0.0001")

    def test_floats_go_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_bool_is_not_an_amount(self):
        with pytest.raises(TypeError):
            to_decimal(True)


class TestRoundingPolicy:

    @pytest.mark.parametrize(
        "policy,quantity,expected",
        [
            ("FLOOR", "0.6", 0),
            ("FLOOR", "1.5", 1),
            ("CEILING", "0.6", 1),
            ("CEILING", "2", 2),
            ("HALF_UP", "0.5", 1),
            ("HALF_UP", "0.4", 0),
        ],
    )
    def test_explicit_policy(self, policy, quantity, expected):
        assert to_stock_units(Decimal(quantity), policy) == expected

    def test_default_comes_from_config(self, app, monkeypatch):
        assert rounding_policy() == "FLOOR"
        monkeypatch.setitem(app.config, "STOCK_ROUNDING", "ceiling")
        assert rounding_policy() == "CEILING"
        assert to_stock_units(Decimal("0.1")) == 1

    def test_unknown_policy(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_ROUNDING", "BANKERS")
        with pytest.raises(ValueError):
            rounding_policy()
