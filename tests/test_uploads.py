from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from cmms.auth import Role
from cmms.config import settings
from cmms.main import create_app
from tests.support import add_store, add_user, bearer_token, make_session_factory


PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 16


class UploadAndReportFileTests(unittest.TestCase):
    def setUp(self) -> None:
        upload_dir = tempfile.TemporaryDirectory()
        report_dir = tempfile.TemporaryDirectory()
        self.addCleanup(upload_dir.cleanup)
        self.addCleanup(report_dir.cleanup)
        self.upload_dir = Path(upload_dir.name)
        self.report_dir = Path(report_dir.name)
        for name, value in (('upload_dir', upload_dir.name), ('report_dir', report_dir.name)):
            patcher = patch.object(settings, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.factory = make_session_factory()
        with self.factory() as db:
            store = add_store(db, name='Downtown', qr_code='qr-downtown')
            self.store_id = store.id
            master = add_user(db, email='master@example.com', role=Role.MASTER_ADMIN)
            admin = add_user(db, email='admin@example.com', role=Role.STORE_ADMIN, store_id=store.id)
            self.master_headers = {'Authorization': f'Bearer {bearer_token(db, master)}'}
            self.admin_headers = {'Authorization': f'Bearer {bearer_token(db, admin)}'}
            db.commit()
        self.client = TestClient(create_app(session_factory=self.factory))

    def test_stored_name_follows_content_type_not_client_filename(self) -> None:
        response = self.client.post(
            '/upload/public',
            data={'qr_code': 'qr-downtown'},
            files={'file': ('evil.html', PNG_BYTES, 'image/png')},
        )

        self.assertEqual(response.status_code, 201)
        stored = response.json()['data']
        self.assertTrue(stored['path'].endswith('.png'))
        self.assertTrue(stored['path'].startswith(f'location/{self.store_id}/workorder/'))
        self.assertEqual(stored['filename'], 'evil.html')

        served = self.client.get(stored['url'])
        self.assertEqual(served.status_code, 200)
        self.assertEqual(served.headers['content-type'], 'image/png')
        self.assertEqual(served.headers['content-disposition'], 'attachment')
        self.assertIn('sandbox', served.headers['content-security-policy'])
        self.assertEqual(served.content, PNG_BYTES)

    def test_non_media_files_are_never_served(self) -> None:
        planted = self.upload_dir / 'location' / str(self.store_id) / 'workorder' / 'page.html'
        planted.parent.mkdir(parents=True)
        planted.write_text('<script>alert(1)</script>', encoding='utf-8')

        response = self.client.get(f'/files/location/{self.store_id}/workorder/page.html')

        self.assertEqual(response.status_code, 404)

    def test_disallowed_content_type_is_rejected(self) -> None:
        response = self.client.post(
            '/upload/public',
            data={'qr_code': 'qr-downtown'},
            files={'file': ('page.html', b'<script></script>', 'text/html')},
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('Only images and videos', response.json()['error'])

    def test_reports_folder_is_reserved(self) -> None:
        response = self.client.post(
            '/upload',
            data={'file_type': 'reports'},
            files={'file': ('chart.png', PNG_BYTES, 'image/png')},
            headers=self.admin_headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid file_type.')

    def test_reports_are_private_to_master_admins(self) -> None:
        generated = self.client.post('/reports/generate', json={'store_id': self.store_id}, headers=self.master_headers)
        self.assertEqual(generated.status_code, 201)
        stored = generated.json()['data']
        self.assertEqual(stored['url'], f'/reports/{self.store_id}/{stored["name"]}')
        self.assertTrue((self.report_dir / str(self.store_id) / stored['name']).is_file())
        self.assertFalse(any(self.upload_dir.iterdir()))

        self.assertEqual(self.client.get(f'/files/{self.store_id}/{stored["name"]}').status_code, 404)
        self.assertEqual(self.client.get(stored['url']).status_code, 401)
        self.assertEqual(self.client.get(stored['url'], headers=self.admin_headers).status_code, 403)

        download = self.client.get(stored['url'], headers=self.master_headers)
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.json()['store']['id'], self.store_id)

        listed = self.client.get('/reports/list', headers=self.master_headers).json()['data']
        self.assertEqual([row['name'] for row in listed], [stored['name']])

    def test_unknown_report_name_is_not_found(self) -> None:
        response = self.client.get(f'/reports/{self.store_id}/notes.txt', headers=self.master_headers)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Report not found.')


if __name__ == '__main__':
    unittest.main()
