"""
Module: bizflow_engines.payment
Responsibility:
    Partial-payment arithmetic for purchases: validate a payment against the
    outstanding remainder and report whether it settles the document.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Decimal-only.

Invariants enforced:
    - A payment is a finite, strictly positive cent amount that fits the
      Numeric(18, 2) money columns.
    - paid_amount never exceeds total + fee.
    - ``fully_paid`` is True exactly when the remainder reaches zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from bizflow_kernel.domain.documents import ZERO, Purchase, WorkflowAction, to_decimal
from bizflow_kernel.exceptions import (
    AlreadyPaidError,
    InvalidPaymentAmountError,
    PaymentExceedsRemainingError,
)

_CENT = Decimal("0.01")
_AMOUNT_CEILING = Decimal("1e16")


@dataclass(frozen=True)
class PaymentOutcome:
    payment_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    fully_paid: bool


def apply_payment(purchase: Purchase, amount: Decimal | None = None) -> PaymentOutcome:
    """Compute the effect of paying ``amount`` towards ``purchase``.

    ``amount=None`` pays the full remainder.

    Raises:
        AlreadyPaidError: nothing remains to be paid.
        InvalidPaymentAmountError: amount is zero, negative, not a finite
            number or too large to store.
        PaymentExceedsRemainingError: amount is larger than the remainder.
    """
    action = WorkflowAction.PAY.value
    status = purchase.status.value
    remaining = purchase.remaining_amount
    if remaining <= ZERO:
        raise AlreadyPaidError(action, purchase.id, status)

    payment = remaining if amount is None else _to_cents(purchase, amount)
    if payment <= ZERO:
        raise InvalidPaymentAmountError(action, purchase.id, status, f"amount={payment}")
    if payment > remaining:
        raise PaymentExceedsRemainingError(action, purchase.id, payment, remaining, status)

    paid = purchase.paid_amount + payment
    left = max(ZERO, purchase.due_amount - paid)
    return PaymentOutcome(
        payment_amount=payment,
        paid_amount=paid,
        remaining_amount=left,
        fully_paid=left == ZERO,
    )


def _to_cents(purchase: Purchase, amount: Decimal) -> Decimal:
    value = to_decimal(amount)
    if not value.is_finite() or abs(value) >= _AMOUNT_CEILING:
        raise InvalidPaymentAmountError(
            WorkflowAction.PAY.value, purchase.id, purchase.status.value, f"amount={amount}"
        )
    try:
        return value.quantize(_CENT)
    except InvalidOperation as exc:
        raise InvalidPaymentAmountError(
            WorkflowAction.PAY.value, purchase.id, purchase.status.value, f"amount={amount}"
        ) from exc
