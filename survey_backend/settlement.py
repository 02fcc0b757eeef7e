"""
Refund settlement for cancelled or early-closed surveys.

The platform keeps a 10% overhead on every reward slot, so a budget of
``total_budget`` supports ``round(total_budget / (reward * 1.1))`` respondents.
When a survey stops early, the creator gets back the unused slots plus the fee
that was reserved for them. The fee is only refunded on the unused portion;
responses already paid out are never clawed back.

Amounts are currency: at most two decimal places and no larger than
``MAX_AMOUNT``, the range of the NUMERIC(14, 2) columns they are stored in.
Within those bounds every step below is exact.
"""

from __future__ import annotations

import decimal
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

FEE_RATE = Decimal("0.1")
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999999999.99")
# Upper bound of the INTEGER column holding response counts.
MAX_COMPLETED_RESPONSES = 2_147_483_647

Amount = Union[int, float, str, Decimal]


class InvalidInputError(ValueError):
    """Raised (or returned) when settlement inputs are unusable."""


@dataclass(frozen=True)
class SettlementInput:
    total_budget: Decimal
    reward_per_response: Decimal
    completed_responses: int


@dataclass(frozen=True)
class SettlementResult:
    max_participants: int
    remaining_slots: int
    refund_rewards: Decimal
    refund_fee: Decimal
    refund_amount: Decimal

    def as_dict(self) -> dict:
        return {
            "max_participants": self.max_participants,
            "remaining_slots": self.remaining_slots,
            "refund_rewards": self.refund_rewards,
            "refund_fee": self.refund_fee,
            "refund_amount": self.refund_amount,
        }


def _arithmetic_context() -> decimal.Context:
    # 40 digits covers MAX_COMPLETED_RESPONSES * MAX_AMOUNT without rounding.
    return decimal.Context(
        prec=40,
        rounding=ROUND_HALF_UP,
        traps=[InvalidOperation, decimal.Overflow, decimal.DivisionByZero],
    )


def _to_decimal(name: str, value: Amount, limit: Decimal) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    try:
        # str() keeps floats like 0.1 from expanding to their binary value.
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except InvalidOperation as exc:
        raise InvalidInputError(f"{name} must be a number, got {value!r}") from exc
    if not amount.is_finite():
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    if amount < 0:
        raise InvalidInputError(f"{name} must not be negative, got {value!r}")
    if amount > limit:
        raise InvalidInputError(f"{name} must not exceed {limit}, got {value!r}")
    return amount


def _to_amount(name: str, value: Amount) -> Decimal:
    amount = _to_decimal(name, value, MAX_AMOUNT)
    if amount != amount.quantize(CENT, context=_arithmetic_context()):
        raise InvalidInputError(
            f"{name} must have at most two decimal places, got {value!r}"
        )
    return amount


def validate_input(
    total_budget: Amount,
    reward_per_response: Amount,
    completed_responses: Amount,
) -> SettlementInput:
    """Normalise raw inputs into a ``SettlementInput`` or raise ``InvalidInputError``."""
    budget = _to_amount("total_budget", total_budget)
    reward = _to_amount("reward_per_response", reward_per_response)
    if reward == 0:
        raise InvalidInputError("reward_per_response must be greater than zero")
    completed = _to_decimal(
        "completed_responses", completed_responses, Decimal(MAX_COMPLETED_RESPONSES)
    )
    if completed != completed.to_integral_value():
        raise InvalidInputError(
            f"completed_responses must be a whole number, got {completed_responses!r}"
        )
    return SettlementInput(
        total_budget=budget,
        reward_per_response=reward,
        completed_responses=int(completed),
    )


def max_participants_for(total_budget: Decimal, reward_per_response: Decimal) -> int:
    """
    Respondents a budget supports, ``round_half_up(budget / (reward * 1.1))``.

    Worked in whole cents with integer arithmetic so no quotient digits are
    lost: budget / (reward * 1.1) == 10 * b / (11 * r), and rounding half up
    is floor((2 * 10 * b + 11 * r) / (2 * 11 * r)).
    """
    budget_cents = int(total_budget * 100)
    reward_cents = int(reward_per_response * 100)
    return (20 * budget_cents + 11 * reward_cents) // (22 * reward_cents)


def settle(settlement_input: SettlementInput) -> SettlementResult:
    """Compute the refund for an already validated input."""
    reward = settlement_input.reward_per_response
    try:
        with decimal.localcontext(_arithmetic_context()):
            max_participants = max_participants_for(
                settlement_input.total_budget, reward
            )
            remaining_slots = max_participants - settlement_input.completed_responses
            refund_rewards = remaining_slots * reward
            refund_fee = refund_rewards * FEE_RATE
            refund_amount = max(Decimal(0), refund_rewards + refund_fee)
    except (InvalidOperation, decimal.Overflow, decimal.DivisionByZero) as exc:
        raise InvalidInputError(f"settlement out of range: {settlement_input}") from exc
    return SettlementResult(
        max_participants=max_participants,
        remaining_slots=remaining_slots,
        refund_rewards=refund_rewards,
        refund_fee=refund_fee,
        refund_amount=refund_amount,
    )


def calculate_settlement(
    total_budget: Amount,
    reward_per_response: Amount,
    completed_responses: Amount,
) -> SettlementResult:
    """
    Return the settlement for a survey, raising ``InvalidInputError`` on bad input.

    >>> calculate_settlement(55000, 1000, 1).refund_amount
    Decimal('53900.0')
    """
    return settle(validate_input(total_budget, reward_per_response, completed_responses))


def try_calculate_settlement(
    total_budget: Amount,
    reward_per_response: Amount,
    completed_responses: Amount,
) -> SettlementResult | InvalidInputError:
    """Like ``calculate_settlement`` but hands the error back instead of raising it."""
    try:
        return calculate_settlement(total_budget, reward_per_response, completed_responses)
    except InvalidInputError as exc:
        return exc


def to_cents(amount: Decimal) -> Decimal:
    """Round an amount half up to whole cents, the precision refunds are paid in."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
