from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from cmms.auth import Role
from cmms.main import create_app
from cmms.models import SessionKind
from tests.support import add_asset, add_store, add_user, bearer_token, make_session_factory


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        with self.factory() as db:
            store = add_store(db, name='Downtown', code='STORE-001', qr_code='qr-downtown')
            other = add_store(db, name='Uptown', code='STORE-002', qr_code='qr-uptown')
            self.store_id = store.id
            self.other_asset_id = add_asset(db, store_id=other.id, name='Ice Machine').id
            self.admin = add_user(
                db,
                email='admin@example.com',
                role=Role.STORE_ADMIN,
                store_id=store.id,
                password='adminpass',
            )
            self.manager = add_user(
                db,
                email='manager@example.com',
                role=Role.USER,
                store_id=store.id,
                password='managerpass',
            )
            self.admin_token = bearer_token(db, self.admin)
            db.commit()
        self.client = TestClient(create_app(session_factory=self.factory))

    def _login(self, email: str, password: str):
        return self.client.post('/auth/login', json={'email': email, 'password': password})

    def test_unauthenticated_request_uses_error_envelope(self) -> None:
        response = self.client.get('/assets')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'success': False, 'error': 'Unauthorized'})

    def test_bad_password_is_rejected(self) -> None:
        response = self._login('admin@example.com', 'wrong')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Invalid email or password')

    def test_cookie_session_requires_csrf_header_on_writes(self) -> None:
        login = self._login('Admin@Example.com', 'adminpass')
        self.assertEqual(login.status_code, 200)
        self.assertTrue(login.json()['success'])
        self.assertIn('cmms_session', self.client.cookies)

        rejected = self.client.post('/assets', json={'name': 'Fryer'})
        self.assertEqual(rejected.status_code, 403)
        self.assertEqual(rejected.json(), {'success': False, 'error': 'Invalid CSRF token'})

        accepted = self.client.post(
            '/assets',
            json={'name': 'Fryer'},
            headers={'x-csrf-token': self.client.cookies['csrf_token']},
        )
        self.assertEqual(accepted.status_code, 201)
        self.assertEqual(accepted.json()['data']['store_id'], self.store_id)

    def test_bearer_token_skips_csrf(self) -> None:
        response = self.client.post(
            '/assets',
            json={'name': 'Mixer'},
            headers={'Authorization': f'Bearer {self.admin_token}'},
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['data']['asset_number'], 1)

    def test_validation_errors_use_400(self) -> None:
        response = self.client.post(
            '/assets',
            json={'name': 'Mixer', 'store_id': 'not-a-number'},
            headers={'Authorization': f'Bearer {self.admin_token}'},
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['success'])

    def test_mobile_auth_is_limited_to_store_managers(self) -> None:
        denied = self.client.post('/mobile/auth', json={'email': 'admin@example.com', 'password': 'adminpass'})
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()['error'], 'Mobile app access is restricted to store managers')

        granted = self.client.post('/mobile/auth', json={'email': 'manager@example.com', 'password': 'managerpass'})
        self.assertEqual(granted.status_code, 200)
        data = granted.json()['data']
        self.assertEqual(data['token_type'], 'bearer')
        self.assertEqual(data['user']['email'], 'manager@example.com')

        me = self.client.get('/auth/me', headers={'Authorization': f'Bearer {data["token"]}'})
        self.assertEqual(me.json()['data']['role'], 'USER')

    def test_revoked_mobile_token_is_rejected(self) -> None:
        with self.factory() as db:
            token = bearer_token(db, self.manager, kind=SessionKind.MOBILE)
            db.commit()
        headers = {'Authorization': f'Bearer {token}'}

        self.assertEqual(self.client.post('/auth/logout', headers=headers).status_code, 200)
        self.assertEqual(self.client.get('/auth/me', headers=headers).status_code, 401)

    def test_public_work_order_rejects_asset_from_another_store(self) -> None:
        response = self.client.post(
            '/workorders/public',
            json={
                'qr_code': 'qr-downtown',
                'title': 'Leaking',
                'problem_description': 'Water under the machine',
                'help_description': 'Please send someone today',
                'priority': 'High',
                'asset_id': self.other_asset_id,
            },
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('does not belong to this store', response.json()['error'])

    def test_asset_list_fails_soft_on_database_errors(self) -> None:
        with patch('cmms.routers.assets.list_assets', side_effect=SQLAlchemyError('boom')):
            response = self.client.get('/assets', headers={'Authorization': f'Bearer {self.admin_token}'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': True, 'data': []})

    def test_store_admin_without_store_sees_no_assets(self) -> None:
        with self.factory() as db:
            add_asset(db, store_id=self.store_id, name='Fryer')
            orphan = add_user(db, email='orphan@example.com', role=Role.STORE_ADMIN)
            token = bearer_token(db, orphan)
            db.commit()

        response = self.client.get('/assets', headers={'Authorization': f'Bearer {token}'})

        self.assertEqual(response.json(), {'success': True, 'data': []})

    def test_public_form_for_unknown_qr_code_is_not_found(self) -> None:
        response = self.client.get('/workorder-form/missing')

        self.assertEqual(response.status_code, 404)
        self.assertIn('not linked to a store', response.text)

    def test_health_and_security_headers(self) -> None:
        response = self.client.get('/health')

        self.assertEqual(response.json(), {'success': True, 'data': {'status': 'ok'}})
        self.assertEqual(response.headers['X-Content-Type-Options'], 'nosniff')


if __name__ == '__main__':
    unittest.main()
