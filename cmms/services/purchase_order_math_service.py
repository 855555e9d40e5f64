from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


CENTS = Decimal('0.01')


@dataclass(frozen=True)
class LineInput:
    description: str
    quantity: int
    unit_price: Decimal
    inventory_item_id: int | None = None


@dataclass(frozen=True)
class LineTotal:
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    inventory_item_id: int | None = None


@dataclass(frozen=True)
class OrderTotals:
    lines: list[LineTotal]
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def _money(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError('Unit price must be a number') from exc
    if not amount.is_finite():
        raise ValueError('Unit price must be a number')
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_line(raw: dict, *, position: int) -> LineInput:
    description = (raw.get('description') or '').strip()
    if not description:
        raise ValueError(f'Item {position}: description is required')

    quantity = raw.get('quantity')
    if quantity is None or isinstance(quantity, bool) or int(quantity) != quantity or quantity <= 0:
        raise ValueError(f'Item {position}: quantity must be greater than 0')

    if raw.get('unit_price') is None:
        raise ValueError(f'Item {position}: unit price is required')
    unit_price = _money(raw['unit_price'])
    if unit_price < 0:
        raise ValueError(f'Item {position}: unit price cannot be negative')

    return LineInput(
        description=description,
        quantity=int(quantity),
        unit_price=unit_price,
        inventory_item_id=raw.get('inventory_item_id'),
    )


def compute_order_totals(lines: list[LineInput], *, tax: Decimal = Decimal('0')) -> OrderTotals:
    totals = [
        LineTotal(
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=(line.unit_price * line.quantity).quantize(CENTS, rounding=ROUND_HALF_UP),
            inventory_item_id=line.inventory_item_id,
        )
        for line in lines
    ]
    subtotal = sum((line.total_price for line in totals), Decimal('0.00'))
    tax_amount = _money(tax)
    return OrderTotals(lines=totals, subtotal=subtotal, tax=tax_amount, total=subtotal + tax_amount)
