from __future__ import annotations

import unittest

from cmms.auth import Role
from cmms.services.asset_service import create_asset, delete_asset
from cmms.services.sequence_service import REQUEST_SCOPE, WORK_ORDER_SCOPE, bump_sequence, next_sequence_value
from tests.support import add_store, add_user, make_session_factory, principal_for


class SequenceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db)
        self.other_store = add_store(self.db, name='Uptown')
        self.principal = principal_for(add_user(self.db, email='master@example.com', role=Role.MASTER_ADMIN))

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, name: str, store_id: int | None = None):
        return create_asset(
            self.db,
            principal=self.principal,
            fields={'name': name, 'store_id': store_id or self.store.id},
        )

    def test_asset_numbers_start_at_one_per_store(self) -> None:
        self.assertEqual(self._create('Fryer').asset_number, 1)
        self.assertEqual(self._create('Mixer').asset_number, 2)
        self.assertEqual(self._create('Oven', self.other_store.id).asset_number, 1)

    def test_deleted_number_is_never_reused(self) -> None:
        first = self._create('Fryer')
        self._create('Mixer')
        self.db.commit()

        delete_asset(self.db, principal=self.principal, asset_id=first.id)
        self.db.commit()

        self.assertEqual(self._create('Oven').asset_number, 3)

    def test_global_scopes_are_independent(self) -> None:
        self.assertEqual(next_sequence_value(self.db, WORK_ORDER_SCOPE), 1)
        self.assertEqual(next_sequence_value(self.db, WORK_ORDER_SCOPE), 2)
        self.assertEqual(next_sequence_value(self.db, REQUEST_SCOPE), 1)

    def test_bump_only_moves_forward(self) -> None:
        bump_sequence(self.db, WORK_ORDER_SCOPE, 10)
        bump_sequence(self.db, WORK_ORDER_SCOPE, 4)
        self.assertEqual(next_sequence_value(self.db, WORK_ORDER_SCOPE), 11)

    def test_unknown_scope_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            next_sequence_value(self.db, 'invoice')


if __name__ == '__main__':
    unittest.main()
