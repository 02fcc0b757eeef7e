import math
import unittest
from decimal import Decimal

from survey_backend.settlement import (
    MAX_AMOUNT,
    MAX_COMPLETED_RESPONSES,
    InvalidInputError,
    SettlementResult,
    calculate_settlement,
    try_calculate_settlement,
    validate_input,
)


def _flat_fee_refund(total_budget, reward_per_response, completed_responses):
    # Old dashboard formula: 5% of the whole budget kept as a platform fee.
    paid = completed_responses * reward_per_response
    return max(0, total_budget - paid - total_budget * 0.05)


class SettlementCalculatorTests(unittest.TestCase):
    def test_worked_example(self):
        result = calculate_settlement(55000, 1000, 1)
        self.assertEqual(result.max_participants, 50)
        self.assertEqual(result.remaining_slots, 49)
        self.assertEqual(result.refund_rewards, Decimal("49000"))
        self.assertEqual(result.refund_fee, Decimal("4900"))
        self.assertEqual(result.refund_amount, Decimal("53900"))

    def test_differs_from_flat_fee_formula(self):
        refund = calculate_settlement(55000, 1000, 1).refund_amount
        legacy = _flat_fee_refund(55000, 1000, 1)
        self.assertEqual(legacy, 51250)
        self.assertNotEqual(refund, Decimal(str(legacy)))

    def test_same_inputs_same_result(self):
        first = calculate_settlement("12345.67", "321.5", 7)
        second = calculate_settlement("12345.67", "321.5", 7)
        self.assertEqual(first, second)

    def test_rounds_half_away_from_zero(self):
        # 27.5 / 11 == 2.5 exactly; banker's rounding would give 2.
        result = calculate_settlement("27.5", 10, 0)
        self.assertEqual(result.max_participants, 3)

    def test_float_inputs_do_not_leak_binary_noise(self):
        result = calculate_settlement(110.0, 0.1, 0)
        self.assertEqual(result.max_participants, 1000)
        self.assertEqual(result.refund_amount, Decimal("110"))

    def test_full_consumption_refunds_nothing(self):
        for completed in (50, 51, 200):
            result = calculate_settlement(55000, 1000, completed)
            self.assertEqual(result.refund_amount, 0)
        over = calculate_settlement(55000, 1000, 60)
        self.assertEqual(over.remaining_slots, -10)
        self.assertLess(over.refund_rewards, 0)

    def test_refund_never_negative(self):
        for budget in (0, 1, 999, 55000, 1_000_000):
            for reward in (1, 7, 1000, 2500):
                for completed in (0, 1, 10, 500, 5000):
                    result = calculate_settlement(budget, reward, completed)
                    self.assertGreaterEqual(result.refund_amount, 0)

    def test_refund_does_not_grow_with_completed_responses(self):
        for budget in (0, 999, 55000, "12345.67", 1_000_000):
            for reward in ("0.01", 7, "321.5", 1000):
                previous = None
                for completed in (0, 1, 2, 5, 10, 49, 50, 51, 500, 10_000_000):
                    amount = calculate_settlement(budget, reward, completed).refund_amount
                    if previous is not None:
                        self.assertLessEqual(amount, previous)
                    previous = amount

    def test_zero_budget(self):
        result = calculate_settlement(0, 1000, 0)
        self.assertEqual(result.max_participants, 0)
        self.assertEqual(result.refund_amount, 0)

    def test_zero_reward_rejected(self):
        with self.assertRaises(InvalidInputError):
            calculate_settlement(55000, 0, 1)
        with self.assertRaises(InvalidInputError):
            calculate_settlement(55000, "0.00", 1)

    def test_negative_inputs_rejected(self):
        for args in ((-1, 1000, 0), (55000, -1000, 0), (55000, 1000, -1)):
            with self.assertRaises(InvalidInputError):
                calculate_settlement(*args)

    def test_non_finite_inputs_rejected(self):
        for args in (
            (math.inf, 1000, 0),
            (55000, math.nan, 0),
            (Decimal("Infinity"), 1000, 0),
            ("NaN", 1000, 0),
        ):
            with self.assertRaises(InvalidInputError):
                calculate_settlement(*args)

    def test_non_numeric_inputs_rejected(self):
        for args in (("lots", 1000, 0), (55000, None, 0), (True, 1000, 0)):
            with self.assertRaises(InvalidInputError):
                calculate_settlement(*args)

    def test_fractional_completed_responses_rejected(self):
        with self.assertRaises(InvalidInputError):
            calculate_settlement(55000, 1000, 1.5)
        self.assertEqual(validate_input(55000, 1000, 3.0).completed_responses, 3)

    def test_huge_finite_inputs_rejected(self):
        for args in (
            ("1e999999", "1e-999999", 0),
            ("1e400", 1, 0),
            (MAX_AMOUNT + Decimal("0.01"), 1000, 0),
            (55000, "1e13", 0),
            (55000, 1000, MAX_COMPLETED_RESPONSES + 1),
            (55000, 1000, "1e999999"),
        ):
            with self.assertRaises(InvalidInputError):
                calculate_settlement(*args)
            self.assertIsInstance(try_calculate_settlement(*args), InvalidInputError)

    def test_sub_cent_amounts_rejected(self):
        for args in ((55000, "1e-999999", 0), ("10.001", 1, 0), (55000, "0.005", 0)):
            with self.assertRaises(InvalidInputError):
                calculate_settlement(*args)
        self.assertEqual(validate_input("10.000", "0.50", 0).total_budget, Decimal("10"))

    def test_largest_inputs_are_exact(self):
        result = calculate_settlement(MAX_AMOUNT, "0.01", 0)
        # 99999999999999 cents / 1.1 cents, rounded half up.
        self.assertEqual(result.max_participants, 90909090909090)
        self.assertEqual(result.refund_rewards, Decimal("909090909090.90"))
        self.assertEqual(result.refund_fee, Decimal("90909090909.090"))
        self.assertEqual(result.refund_amount, Decimal("999999999999.990"))

        drained = calculate_settlement(MAX_AMOUNT, MAX_AMOUNT, MAX_COMPLETED_RESPONSES)
        self.assertEqual(drained.max_participants, 1)
        self.assertEqual(drained.refund_amount, 0)
        self.assertEqual(
            drained.refund_rewards, (1 - MAX_COMPLETED_RESPONSES) * MAX_AMOUNT
        )

    def test_invalid_input_error_is_value_error(self):
        self.assertTrue(issubclass(InvalidInputError, ValueError))

    def test_try_calculate_returns_error_value(self):
        outcome = try_calculate_settlement(55000, 0, 1)
        self.assertIsInstance(outcome, InvalidInputError)
        self.assertIn("reward_per_response", str(outcome))

    def test_try_calculate_returns_result(self):
        outcome = try_calculate_settlement(55000, 1000, 1)
        self.assertIsInstance(outcome, SettlementResult)
        self.assertEqual(outcome.as_dict()["refund_amount"], Decimal("53900"))


if __name__ == "__main__":
    unittest.main()
