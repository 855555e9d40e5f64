from __future__ import annotations

import unittest
from decimal import Decimal

from cmms.auth import Role
from cmms.models import InventoryItem, PurchaseOrderStatus, Vendor
from cmms.services.purchase_order_service import (
    create_purchase_order,
    receive_purchase_order,
    set_purchase_order_status,
)
from tests.support import add_store, add_user, make_session_factory, principal_for


class PurchaseOrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db, name='Downtown')
        self.other_store = add_store(self.db, name='Uptown')
        self.admin = principal_for(add_user(self.db, email='admin@example.com', role=Role.STORE_ADMIN, store_id=self.store.id))
        self.belts = InventoryItem(name='Fan Belt', part_number='FB-1', quantity_on_hand=2, store_id=self.store.id)
        self.db.add(self.belts)
        self.db.flush()

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, **extra):
        fields = {
            'name': 'Spring restock',
            'items': [
                {'description': 'Fan belt', 'quantity': 3, 'unit_price': '12.50', 'inventory_item_id': self.belts.id},
                {'description': 'Shop towels', 'quantity': 1, 'unit_price': 4},
            ],
        }
        fields.update(extra)
        return create_purchase_order(self.db, principal=self.admin, fields=fields)

    def test_create_numbers_and_totals_order(self) -> None:
        po = self._create()
        second = self._create(name='Summer restock')

        self.assertEqual(po.status, PurchaseOrderStatus.DRAFT)
        self.assertEqual(po.store_id, self.store.id)
        self.assertEqual(po.subtotal, Decimal('41.50'))
        self.assertEqual(po.total, Decimal('41.50'))
        self.assertEqual((po.po_number, second.po_number), (1, 2))

    def test_inventory_item_must_belong_to_order_store(self) -> None:
        foreign = InventoryItem(name='Fan Belt', part_number='FB-1', quantity_on_hand=5, store_id=self.other_store.id)
        self.db.add(foreign)
        self.db.flush()

        with self.assertRaisesRegex(ValueError, 'Item 1: inventory item not found in this store'):
            self._create(items=[{'description': 'Fan belt', 'quantity': 1, 'unit_price': 1, 'inventory_item_id': foreign.id}])

    def test_vendor_must_be_shared_or_from_order_store(self) -> None:
        shared = Vendor(name='Acme', email='acme@example.com')
        foreign = Vendor(name='Uptown Supply', email='uptown@example.com', store_id=self.other_store.id)
        self.db.add_all([shared, foreign])
        self.db.flush()

        self.assertEqual(self._create(vendor_id=shared.id).vendor_id, shared.id)
        with self.assertRaisesRegex(ValueError, 'Vendor does not belong to this store'):
            self._create(vendor_id=foreign.id)

    def test_receive_adds_stock_once(self) -> None:
        po = self._create()

        receive_purchase_order(self.db, principal=self.admin, purchase_order_id=po.id)

        self.assertEqual(po.status, PurchaseOrderStatus.RECEIVED)
        self.assertIsNotNone(po.received_at)
        self.assertEqual(self.belts.quantity_on_hand, 5)
        with self.assertRaisesRegex(ValueError, 'Received orders cannot be received'):
            receive_purchase_order(self.db, principal=self.admin, purchase_order_id=po.id)
        self.assertEqual(self.belts.quantity_on_hand, 5)

    def test_status_flow(self) -> None:
        po = self._create()

        set_purchase_order_status(self.db, principal=self.admin, purchase_order_id=po.id, status='ordered')
        self.assertEqual(po.status, PurchaseOrderStatus.ORDERED)

        with self.assertRaisesRegex(ValueError, 'Use the receive action'):
            set_purchase_order_status(self.db, principal=self.admin, purchase_order_id=po.id, status='Received')

        set_purchase_order_status(self.db, principal=self.admin, purchase_order_id=po.id, status='Cancelled')
        with self.assertRaisesRegex(ValueError, 'Cancelled orders cannot be changed'):
            set_purchase_order_status(self.db, principal=self.admin, purchase_order_id=po.id, status='Draft')
        with self.assertRaisesRegex(ValueError, 'Cancelled orders cannot be received'):
            receive_purchase_order(self.db, principal=self.admin, purchase_order_id=po.id)

    def test_other_store_admin_cannot_read_order(self) -> None:
        po = self._create()
        outsider = principal_for(
            add_user(self.db, email='uptown@example.com', role=Role.STORE_ADMIN, store_id=self.other_store.id)
        )

        with self.assertRaises(PermissionError):
            receive_purchase_order(self.db, principal=outsider, purchase_order_id=po.id)


if __name__ == '__main__':
    unittest.main()
