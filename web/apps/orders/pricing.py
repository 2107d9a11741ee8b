"""VAT-inclusive price arithmetic.

All money values are ``decimal.Decimal``. The VAT intermediate is kept at 4
fractional digits, every money value handed to callers is quantized to 2
digits with ROUND_HALF_UP, and the reported VAT amount is derived from the
rounded final price so that ``base + vat == final`` holds exactly.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from .errors import InvalidPricingInput

CENTS = Decimal("0.01")
VAT_PRECISION = Decimal("0.0001")
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def round4(value: Decimal) -> Decimal:
    return value.quantize(VAT_PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LinePrice:
    """Pricing of one order line.

    Attributes:
        vat_amount: VAT per unit, derived as ``unit_final - unit_price``.
        unit_final: VAT-inclusive price of one unit.
        final_price: ``unit_final * quantity`` rounded to cents.
    """

    vat_amount: Decimal
    unit_final: Decimal
    final_price: Decimal


class PricingCalculator:
    """Stateless VAT calculator, safe to share between threads."""

    def compute(self, base_price, vat_percentage) -> tuple[Decimal, Decimal]:
        """Compute the VAT amount and VAT-inclusive price of a base price.

        Args:
            base_price: Price before VAT, strictly positive.
            vat_percentage: VAT percentage in the inclusive range [0, 100].

        Returns:
            tuple[Decimal, Decimal]: ``(vat_amount, final_price)`` where
            ``final_price = round2(base + round4(base * pct / 100))`` and
            ``vat_amount = final_price - base``.

        Raises:
            InvalidPricingInput: When an input is missing, not numeric,
                negative, out of range, or the base price is zero.
        """
        base = self._to_decimal(base_price, "base_price", base_price, vat_percentage)
        pct = self._to_decimal(vat_percentage, "vat_percentage", base_price, vat_percentage)
        if base <= 0:
            raise InvalidPricingInput("Base price must be greater than 0", base_price, vat_percentage)
        if pct < 0 or pct > HUNDRED:
            raise InvalidPricingInput(
                "VAT percentage must be between 0 and 100", base_price, vat_percentage
            )

        vat_raw = round4(base * pct / HUNDRED)
        final_price = round2(base + vat_raw)
        return final_price - base, final_price

    def line(self, unit_price, vat_percentage, quantity: int) -> LinePrice:
        """Price ``quantity`` units of a product.

        Args:
            unit_price: Product base price snapshot.
            vat_percentage: VAT percentage of the order region.
            quantity: Number of units, at least 1.

        Returns:
            LinePrice: Per-unit VAT, per-unit final price and line total.
        """
        if quantity is None or quantity < 1:
            raise InvalidPricingInput("Quantity must be at least 1", unit_price, vat_percentage)
        vat_amount, unit_final = self.compute(unit_price, vat_percentage)
        return LinePrice(
            vat_amount=vat_amount,
            unit_final=unit_final,
            final_price=round2(unit_final * quantity),
        )

    @staticmethod
    def _to_decimal(value, name: str, base_price, vat_percentage) -> Decimal:
        if value is None:
            raise InvalidPricingInput(f"{name} is required", base_price, vat_percentage)
        if isinstance(value, float):
            value = repr(value)
        try:
            dec = Decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidPricingInput(f"{name} is not a number", base_price, vat_percentage)
        if not dec.is_finite():
            raise InvalidPricingInput(f"{name} is not a number", base_price, vat_percentage)
        return dec
