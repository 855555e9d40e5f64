from __future__ import annotations

import unittest

from sqlalchemy import select

from cmms.auth import (
    MasterAdminPrincipal,
    Role,
    StoreAdminPrincipal,
    UserPrincipal,
    can_create_requests,
    can_create_work_orders,
    can_see_all_stores,
    get_scoped_store_id,
    has_store_scope,
    is_admin_like,
    resolve_target_store_id,
    scope_condition,
)
from cmms.models import Asset
from tests.support import add_asset, add_store, make_session_factory


class RolePredicateTests(unittest.TestCase):
    def test_admin_like_accepts_any_case(self) -> None:
        self.assertTrue(is_admin_like('master_admin'))
        self.assertTrue(is_admin_like('Store_Admin'))
        self.assertTrue(is_admin_like(Role.ADMIN))
        self.assertFalse(is_admin_like('TECHNICIAN'))
        self.assertFalse(is_admin_like(None))

    def test_only_master_admin_sees_all_stores(self) -> None:
        self.assertTrue(can_see_all_stores(Role.MASTER_ADMIN))
        for role in (Role.STORE_ADMIN, Role.ADMIN, Role.TECHNICIAN, Role.VENDOR, Role.USER):
            self.assertFalse(can_see_all_stores(role))

    def test_scoped_store_id_is_none_only_for_master_admin(self) -> None:
        self.assertIsNone(get_scoped_store_id(Role.MASTER_ADMIN, 5))
        self.assertEqual(get_scoped_store_id(Role.STORE_ADMIN, 5), 5)
        self.assertEqual(get_scoped_store_id('user', 3), 3)
        self.assertIsNone(get_scoped_store_id(Role.STORE_ADMIN, None))

    def test_creation_permissions(self) -> None:
        self.assertTrue(can_create_work_orders(Role.USER))
        self.assertFalse(can_create_work_orders(Role.TECHNICIAN))
        self.assertFalse(can_create_work_orders(Role.VENDOR))
        self.assertTrue(can_create_requests(Role.VENDOR))
        self.assertFalse(can_create_requests(Role.TECHNICIAN))


class StoreScopingTests(unittest.TestCase):
    def test_store_admin_scope_matches_own_store_only(self) -> None:
        principal = StoreAdminPrincipal(id=1, email='a@example.com', role=Role.STORE_ADMIN, store_id=4)
        self.assertTrue(has_store_scope(principal, 4))
        self.assertFalse(has_store_scope(principal, 5))

    def test_store_admin_without_store_sees_nothing(self) -> None:
        principal = StoreAdminPrincipal(id=1, email='a@example.com', role=Role.STORE_ADMIN, store_id=None)
        self.assertFalse(has_store_scope(principal, None))
        self.assertFalse(has_store_scope(principal, 1))

        factory = make_session_factory()
        with factory() as db:
            store = add_store(db)
            add_asset(db, store_id=store.id)
            condition = scope_condition(Asset.store_id, principal)
            self.assertEqual(db.execute(select(Asset).where(condition)).scalars().all(), [])

    def test_master_admin_has_no_restriction_unless_filtering(self) -> None:
        principal = MasterAdminPrincipal(id=1, email='m@example.com', role=Role.MASTER_ADMIN, store_id=None)
        self.assertIsNone(scope_condition(Asset.store_id, principal))
        self.assertIsNotNone(scope_condition(Asset.store_id, principal, 3))

    def test_resolve_target_store_for_master_requires_store(self) -> None:
        principal = MasterAdminPrincipal(id=1, email='m@example.com', role=Role.MASTER_ADMIN, store_id=None)
        with self.assertRaisesRegex(ValueError, 'store_id is required'):
            resolve_target_store_id(principal, None)
        self.assertEqual(resolve_target_store_id(principal, 9), 9)

    def test_resolve_target_store_fails_closed_without_assignment(self) -> None:
        principal = StoreAdminPrincipal(id=1, email='a@example.com', role=Role.STORE_ADMIN, store_id=None)
        with self.assertRaisesRegex(ValueError, 'User has no store assigned'):
            resolve_target_store_id(principal, None)

    def test_resolve_target_store_rejects_other_store(self) -> None:
        principal = UserPrincipal(id=1, email='u@example.com', role=Role.USER, store_id=2)
        self.assertEqual(resolve_target_store_id(principal, None), 2)
        with self.assertRaises(PermissionError):
            resolve_target_store_id(principal, 3)


if __name__ == '__main__':
    unittest.main()
