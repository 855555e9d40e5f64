from __future__ import annotations

import unittest
from decimal import Decimal

from cmms.services.purchase_order_math_service import LineInput, compute_order_totals, validate_line


class PurchaseOrderMathServiceTests(unittest.TestCase):
    def test_validate_line_normalizes_price_and_quantity(self) -> None:
        line = validate_line({'description': '  Condenser filter ', 'quantity': 3, 'unit_price': '4.005'}, position=1)
        self.assertEqual(line.description, 'Condenser filter')
        self.assertEqual(line.quantity, 3)
        self.assertEqual(line.unit_price, Decimal('4.01'))
        self.assertIsNone(line.inventory_item_id)

    def test_validate_line_requires_description(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Item 2: description is required'):
            validate_line({'description': ' ', 'quantity': 1, 'unit_price': 1}, position=2)

    def test_validate_line_rejects_zero_quantity(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Item 1: quantity must be greater than 0'):
            validate_line({'description': 'Belt', 'quantity': 0, 'unit_price': 1}, position=1)

    def test_validate_line_rejects_fractional_quantity(self) -> None:
        with self.assertRaisesRegex(ValueError, 'quantity must be greater than 0'):
            validate_line({'description': 'Belt', 'quantity': 1.5, 'unit_price': 1}, position=1)

    def test_validate_line_requires_unit_price(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Item 3: unit price is required'):
            validate_line({'description': 'Belt', 'quantity': 1}, position=3)

    def test_validate_line_rejects_negative_unit_price(self) -> None:
        with self.assertRaisesRegex(ValueError, 'unit price cannot be negative'):
            validate_line({'description': 'Belt', 'quantity': 1, 'unit_price': '-0.50'}, position=1)

    def test_zero_unit_price_is_allowed(self) -> None:
        line = validate_line({'description': 'Warranty part', 'quantity': 2, 'unit_price': 0}, position=1)
        self.assertEqual(line.unit_price, Decimal('0.00'))

    def test_order_totals_sum_line_totals(self) -> None:
        totals = compute_order_totals(
            [
                LineInput(description='Filter', quantity=3, unit_price=Decimal('4.25')),
                LineInput(description='Belt', quantity=2, unit_price=Decimal('19.99'), inventory_item_id=7),
            ]
        )
        self.assertEqual([line.total_price for line in totals.lines], [Decimal('12.75'), Decimal('39.98')])
        self.assertEqual(totals.lines[1].inventory_item_id, 7)
        self.assertEqual(totals.subtotal, Decimal('52.73'))
        self.assertEqual(totals.tax, Decimal('0.00'))
        self.assertEqual(totals.total, Decimal('52.73'))

    def test_order_totals_add_tax(self) -> None:
        totals = compute_order_totals(
            [LineInput(description='Filter', quantity=1, unit_price=Decimal('10.00'))],
            tax=Decimal('0.825'),
        )
        self.assertEqual(totals.tax, Decimal('0.83'))
        self.assertEqual(totals.total, Decimal('10.83'))


if __name__ == '__main__':
    unittest.main()
