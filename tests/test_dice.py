"""
Dice tool tests.

Run with: pytest tests/test_dice.py -v
"""
from unittest.mock import patch

import pytest

from functions import dice


class TestRollDice:
    """Expression parsing and totals."""

    def test_single_die_with_modifier(self):
        with patch.object(dice._rng, 'randint', return_value=11):
            text, total = dice.roll_dice("1d20+4")
        assert total == 15
        assert text == "1d20+4: 1d20 [11] + 4 = 15"

    def test_keep_highest(self):
        with patch.object(dice._rng, 'randint', side_effect=[3, 6, 1, 5]):
            text, total = dice.roll_dice("4d6kh3")
        assert total == 14
        assert "kept 6, 5, 3" in text

    def test_keep_lowest(self):
        with patch.object(dice._rng, 'randint', side_effect=[17, 4]):
            _, total = dice.roll_dice("2d20kl1")
        assert total == 4

    def test_multiple_terms(self):
        with patch.object(dice._rng, 'randint', side_effect=[2, 7, 3]):
            _, total = dice.roll_dice("2d8 + 1d6 - 1")
        assert total == 2 + 7 + 3 - 1

    def test_implicit_single_die(self):
        with patch.object(dice._rng, 'randint', return_value=4):
            _, total = dice.roll_dice("d6")
        assert total == 4

    def test_totals_within_range(self):
        for _ in range(100):
            _, total = dice.roll_dice("3d6")
            assert 3 <= total <= 18

    @pytest.mark.parametrize("expr", ["", "abc", "1d", "1d20+", "1d20 4", "0d6", "1d0", "2d6kh3", "1000d6"])
    def test_invalid_expressions(self, expr):
        with pytest.raises(ValueError):
            dice.roll_dice(expr)


class TestExecute:
    """Tool entry point."""

    def test_execute(self):
        result, success = dice.execute("roll_dice", {"prompt": "2d1"}, None)
        assert success
        assert result.endswith("= 2")

    def test_unknown_function(self):
        _, success = dice.execute("roll_bones", {}, None)
        assert success is False
