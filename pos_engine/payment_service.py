"""
Payment service for validating payments and building finalized sales.
"""
import logging
from enum import Enum
from typing import List, Optional, Sequence

from pos_engine import pricing
from pos_engine.exceptions import CartEmptyError, PaymentValidationError
from pos_engine.models import (
    CartLine,
    FinalizedSale,
    PaymentMethod,
    PaymentSplit,
    SaleLine,
    TerminalSettings,
)
from pos_engine.money import format_money, parse_amount

logger = logging.getLogger(__name__)


class PaymentState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    FINALIZED = "FINALIZED"
    REJECTED = "REJECTED"


class PaymentProcessor:
    """
    Validates one payment attempt at a time.

    A rejected attempt leaves the cart alone; call ``reset`` (or simply try
    again) to start a new attempt.
    """

    def __init__(self, settings: Optional[TerminalSettings] = None):
        self.settings = settings or TerminalSettings()
        self.state = PaymentState.IDLE
        self.last_error: Optional[str] = None

    def reset(self) -> None:
        self.state = PaymentState.IDLE
        self.last_error = None

    def _money(self, minor: int) -> str:
        return format_money(minor, self.settings.currency_symbol, self.settings.currency_exponent)

    def _reject(self, reason: str) -> PaymentValidationError:
        self.state = PaymentState.REJECTED
        self.last_error = reason
        logger.info("Payment rejected", extra={"reason": reason})
        return PaymentValidationError(reason)

    def _begin(self, lines: Sequence[CartLine]) -> None:
        self.state = PaymentState.VALIDATING
        self.last_error = None
        if not lines:
            self.state = PaymentState.REJECTED
            self.last_error = "Cart is empty"
            raise CartEmptyError()

    def _check_enabled(self, method: PaymentMethod) -> None:
        if method not in self.settings.enabled_payment_methods:
            raise self._reject(f"Payment method {method.value} is not enabled")

    def _build_sale(
        self,
        lines: Sequence[CartLine],
        discount: int,
        payment_method: PaymentMethod,
        payment_splits: Optional[List[PaymentSplit]] = None,
        cash_received: Optional[int] = None,
        change: int = 0,
        customer_id: Optional[int] = None,
    ) -> FinalizedSale:
        shares = pricing.distribute_loyalty_discount(lines, discount)
        sale_lines = [
            SaleLine(
                product_id=line.product.id,
                variant_id=line.variant.id if line.variant else None,
                name=line.display_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                subtotal=line.subtotal,
                discount=share.amount,
            )
            for line, share in zip(lines, shares)
        ]
        sub = pricing.subtotal(lines)
        tax_amount = pricing.tax(lines)
        sale = FinalizedSale(
            lines=sale_lines,
            subtotal=sub,
            tax=tax_amount,
            discount=discount,
            total=max(0, sub + tax_amount - discount),
            payment_method=payment_method,
            payment_splits=list(payment_splits or []),
            cash_received=cash_received,
            change_due=change,
            customer_id=customer_id,
            currency_code=self.settings.currency_code,
        )
        self.state = PaymentState.FINALIZED
        logger.info(
            "Payment finalized",
            extra={"payment_method": payment_method.value, "total": sale.total},
        )
        return sale

    def pay_single(
        self,
        lines: Sequence[CartLine],
        method: PaymentMethod,
        payable_total: int,
        cash_received: Optional[str] = None,
        discount: int = 0,
        customer_id: Optional[int] = None,
    ) -> FinalizedSale:
        """
        Validate a single-method payment.

        Args:
            lines: Cart lines being paid for
            method: CASH, CARD or another enabled non-mixed method
            payable_total: Amount due after loyalty discount, in minor units
            cash_received: Cash amount as typed by the cashier (CASH only)

        Returns:
            FinalizedSale ready to hand to the sales collaborator
        """
        self._begin(lines)

        if method == PaymentMethod.MIXED:
            raise self._reject("Use split payment for mixed payment methods")
        self._check_enabled(method)

        if method != PaymentMethod.CASH:
            return self._build_sale(lines, discount, method, customer_id=customer_id)

        if cash_received is None or not str(cash_received).strip():
            raise self._reject("Please enter cash received amount")

        try:
            cash = parse_amount(cash_received, self.settings.currency_exponent)
        except ValueError:
            raise self._reject("Please enter a valid cash amount")
        if cash < 0:
            raise self._reject("Please enter a valid cash amount")

        if cash < payable_total:
            raise self._reject(
                f"Insufficient cash. Need {self._money(payable_total)}, received {self._money(cash)}"
            )

        return self._build_sale(
            lines,
            discount,
            PaymentMethod.CASH,
            cash_received=cash,
            change=pricing.change_due(cash, payable_total),
            customer_id=customer_id,
        )

    def default_splits(self, payable_total: int) -> List[PaymentSplit]:
        """Starting point for a split payment: everything in cash"""
        return [PaymentSplit(method=PaymentMethod.CASH, amount=payable_total)]

    def add_split(self, splits: List[PaymentSplit], payable_total: int) -> List[PaymentSplit]:
        """Append a cash split covering whatever is not yet allocated"""
        if len(splits) >= self.settings.max_payment_splits:
            raise PaymentValidationError(
                f"At most {self.settings.max_payment_splits} payment methods are allowed"
            )
        remaining = payable_total - sum(split.amount for split in splits)
        if remaining <= 0:
            raise PaymentValidationError("Total amount already allocated")
        return [*splits, PaymentSplit(method=PaymentMethod.CASH, amount=remaining)]

    def validate_splits(self, splits: Sequence[PaymentSplit], payable_total: int) -> None:
        if not splits:
            raise self._reject("At least one payment method is required")
        if len(splits) > self.settings.max_payment_splits:
            raise self._reject(
                f"At most {self.settings.max_payment_splits} payment methods are allowed"
            )

        paid = sum(split.amount for split in splits)
        difference = payable_total - paid
        if difference >= self.settings.epsilon:
            raise self._reject(f"Insufficient payment: {self._money(difference)} remaining")
        if -difference >= self.settings.epsilon:
            raise self._reject(f"Overpayment: {self._money(-difference)} excess")

        methods = [split.method for split in splits]
        if len(methods) != len(set(methods)):
            raise self._reject("Duplicate payment methods not allowed")

        if any(split.amount <= 0 for split in splits):
            raise self._reject("All payment amounts must be greater than zero")

        for split in splits:
            if split.method == PaymentMethod.MIXED:
                raise self._reject("MIXED is not a valid split payment method")
            self._check_enabled(split.method)

    def pay_split(
        self,
        lines: Sequence[CartLine],
        splits: Sequence[PaymentSplit],
        payable_total: int,
        discount: int = 0,
        customer_id: Optional[int] = None,
    ) -> FinalizedSale:
        """Validate a split payment and build a MIXED sale"""
        self._begin(lines)
        self.validate_splits(splits, payable_total)
        return self._build_sale(
            lines,
            discount,
            PaymentMethod.MIXED,
            payment_splits=list(splits),
            customer_id=customer_id,
        )
