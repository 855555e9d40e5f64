from __future__ import annotations

import unittest

from cmms.auth import Role
from cmms.security.passwords import verify_password
from cmms.services.user_service import create_user, reset_user_password, update_user
from tests.support import add_store, add_user, make_session_factory, principal_for


class UserServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db, name='Downtown')
        self.other_store = add_store(self.db, name='Uptown')
        self.master_user = add_user(self.db, email='master@example.com', role=Role.MASTER_ADMIN)
        self.master = principal_for(self.master_user)
        self.admin = principal_for(add_user(self.db, email='admin@example.com', role=Role.STORE_ADMIN, store_id=self.store.id))

    def tearDown(self) -> None:
        self.db.close()

    def test_last_master_admin_cannot_be_demoted_or_deactivated(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Cannot remove the last master admin'):
            update_user(
                self.db,
                principal=self.master,
                user_id=self.master_user.id,
                fields={'role': 'STORE_ADMIN', 'store_id': self.store.id},
            )
        with self.assertRaisesRegex(ValueError, 'Cannot remove the last master admin'):
            update_user(self.db, principal=self.master, user_id=self.master_user.id, fields={'active': False})

        self.assertTrue(self.master_user.active)
        self.assertEqual(self.master_user.role, Role.MASTER_ADMIN)

    def test_master_admin_can_step_down_when_another_exists(self) -> None:
        add_user(self.db, email='second@example.com', role=Role.MASTER_ADMIN)

        user = update_user(self.db, principal=self.master, user_id=self.master_user.id, fields={'active': False})

        self.assertFalse(user.active)

    def test_store_admin_creates_users_in_own_store(self) -> None:
        user = create_user(
            self.db,
            principal=self.admin,
            email=' Tech@Example.com ',
            password='long-enough-password',
            role='technician',
            store_id=None,
        )

        self.assertEqual(user.email, 'tech@example.com')
        self.assertEqual(user.store_id, self.store.id)
        self.assertEqual(user.role, Role.TECHNICIAN)

    def test_store_admin_cannot_grant_admin_roles(self) -> None:
        for role in ('MASTER_ADMIN', 'STORE_ADMIN'):
            with self.assertRaises(PermissionError):
                create_user(
                    self.db,
                    principal=self.admin,
                    email=f'{role.lower()}@example.com',
                    password='long-enough-password',
                    role=role,
                    store_id=self.store.id,
                )

    def test_store_admin_cannot_create_users_elsewhere(self) -> None:
        with self.assertRaises(PermissionError):
            create_user(
                self.db,
                principal=self.admin,
                email='uptown@example.com',
                password='long-enough-password',
                role='USER',
                store_id=self.other_store.id,
            )

    def test_duplicate_email_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Email is already in use'):
            create_user(
                self.db,
                principal=self.master,
                email='ADMIN@example.com',
                password='long-enough-password',
                role='USER',
                store_id=self.store.id,
            )

    def test_reset_password_replaces_hash(self) -> None:
        reset_user_password(self.db, user_id=self.master_user.id, new_password='brand-new-password')

        self.assertTrue(verify_password('brand-new-password', self.master_user.password_hash))
        with self.assertRaisesRegex(ValueError, 'Password must be at least'):
            reset_user_password(self.db, user_id=self.master_user.id, new_password='short')


if __name__ == '__main__':
    unittest.main()
