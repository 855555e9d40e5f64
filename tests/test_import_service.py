from __future__ import annotations

import io
import unittest

from openpyxl import Workbook, load_workbook
from sqlalchemy import select

from cmms.auth import Role
from cmms.models import Asset, InventoryItem, Vendor
from cmms.services.import_service import (
    ASSET_COLUMNS,
    VENDOR_TEMPLATE_HEADERS,
    import_assets,
    import_inventory,
    import_vendors,
    read_import_rows,
    vendor_template_xlsx,
)
from tests.support import add_store, add_user, make_session_factory, principal_for


def _xlsx(rows: list[list]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class ReadImportRowsTests(unittest.TestCase):
    def test_header_spellings_map_to_canonical_fields(self) -> None:
        rows = read_import_rows(
            filename='assets.csv',
            content=b'AssetName, Location ,Parent Asset ID\nFryer,Kitchen,3\n',
            columns=ASSET_COLUMNS,
        )
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].row_number, 2)
        self.assertEqual(rows[0].get('name'), 'Fryer')
        self.assertEqual(rows[0].get('location'), 'Kitchen')
        self.assertEqual(rows[0].get('parent_asset_number'), '3')

    def test_blank_lines_are_skipped_but_row_numbers_follow_the_sheet(self) -> None:
        rows = read_import_rows(filename='assets.csv', content=b'Name\nFryer\n,\nMixer\n', columns=ASSET_COLUMNS)
        self.assertEqual([row.row_number for row in rows], [2, 4])

    def test_legacy_spreadsheets_are_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'not supported'):
            read_import_rows(filename='assets.xls', content=b'\xd0\xcf\x11\xe0', columns=ASSET_COLUMNS)

    def test_unknown_extension_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid file type'):
            read_import_rows(filename='assets.txt', content=b'Name\nFryer\n', columns=ASSET_COLUMNS)

    def test_corrupt_xlsx_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'valid .xlsx'):
            read_import_rows(filename='assets.xlsx', content=b'not a zip file', columns=ASSET_COLUMNS)

    def test_empty_upload_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'No file provided'):
            read_import_rows(filename='assets.csv', content=b'', columns=ASSET_COLUMNS)


class ImportServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db, code='STORE-001')
        self.other_store = add_store(self.db, name='Uptown', code='STORE-002')
        self.master = principal_for(add_user(self.db, email='master@example.com', role=Role.MASTER_ADMIN))
        self.store_admin = principal_for(
            add_user(self.db, email='admin@example.com', role=Role.STORE_ADMIN, store_id=self.store.id)
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_asset_import_reports_bad_rows_and_keeps_going(self) -> None:
        result = import_assets(
            self.db,
            principal=self.master,
            store_id=self.store.id,
            filename='assets.csv',
            content=b'Asset Name,Location\nFryer,Kitchen\n,Back\nMixer,Prep\n',
        )

        self.assertEqual((result.total, result.success_count, result.failed_count), (3, 2, 1))
        self.assertTrue(result.errors[0].startswith('Row 3: Asset name is required'))
        assets = self.db.execute(select(Asset).order_by(Asset.asset_number)).scalars().all()
        self.assertEqual([(asset.name, asset.asset_number) for asset in assets], [('Fryer', 1), ('Mixer', 2)])
        self.assertTrue(all(asset.store_id == self.store.id for asset in assets))

    def test_asset_import_rejects_duplicate_ids_within_the_file(self) -> None:
        result = import_assets(
            self.db,
            principal=self.master,
            store_id=self.store.id,
            filename='assets.csv',
            content=b'Asset ID,Asset Name\n7,Fryer\n7,Mixer\n,Oven\n',
        )

        self.assertEqual(result.errors, ['Row 3: Asset ID 7 already exists'])
        numbers = self.db.execute(select(Asset.asset_number).order_by(Asset.asset_number)).scalars().all()
        self.assertEqual(numbers, [7, 8])

    def test_asset_import_links_parent_by_name(self) -> None:
        import_assets(
            self.db,
            principal=self.master,
            store_id=self.store.id,
            filename='assets.csv',
            content=b'Name,Parent Asset Name\nKitchen Line,\nFryer,kitchen line\n',
        )

        parent, child = self.db.execute(select(Asset).order_by(Asset.asset_number)).scalars().all()
        self.assertEqual(child.parent_asset_id, parent.id)

    def test_store_admin_import_ignores_requested_store(self) -> None:
        import_assets(
            self.db,
            principal=self.store_admin,
            store_id=self.other_store.id,
            filename='assets.csv',
            content=b'Name\nFryer\n',
        )

        asset = self.db.execute(select(Asset)).scalar_one()
        self.assertEqual(asset.store_id, self.store.id)

    def test_master_import_into_missing_store_fails(self) -> None:
        with self.assertRaises(LookupError):
            import_assets(self.db, principal=self.master, store_id=999, filename='assets.csv', content=b'Name\nFryer\n')

    def test_inventory_xlsx_import(self) -> None:
        content = _xlsx(
            [
                ['Part Name', 'Part Number', 'Qty', 'Reorder Threshold', 'Location'],
                ['Condenser filter', 'FLT-1', 4, 2, 'Shelf A'],
                ['Spare filter', 'flt-1', 1, 0, 'Shelf B'],
                ['Gasket', 'GSK-9', -1, 0, None],
                ['Belt', 'BLT-2', None, None, None],
            ]
        )

        result = import_inventory(
            self.db,
            principal=self.master,
            store_id=self.store.id,
            filename='parts.xlsx',
            content=content,
        )

        self.assertEqual((result.total, result.success_count, result.failed_count), (4, 2, 2))
        self.assertEqual(
            result.errors,
            ['Row 3: Part number flt-1 already exists', 'Row 4: Invalid quantity on hand'],
        )
        items = self.db.execute(select(InventoryItem).order_by(InventoryItem.id)).scalars().all()
        self.assertEqual([(item.part_number, item.quantity_on_hand) for item in items], [('FLT-1', 4), ('BLT-2', 0)])

    def test_vendor_import_resolves_store_codes_and_dedupes_email(self) -> None:
        result = import_vendors(
            self.db,
            principal=self.master,
            store_id=None,
            filename='vendors.csv',
            content=(
                b"Vendor's Name,Email,Store Code\n"
                b'Acme,Service@Acme.example,STORE-002\n'
                b'Acme Again,service@acme.example,STORE-001\n'
                b'Nobody,nobody@example.com,STORE-999\n'
            ),
        )

        self.assertEqual(result.success_count, 1)
        self.assertEqual(
            result.errors,
            ['Row 3: Email service@acme.example already exists', 'Row 4: Store not found: STORE-999'],
        )
        vendor = self.db.execute(select(Vendor)).scalar_one()
        self.assertEqual((vendor.email, vendor.store_id), ('service@acme.example', self.other_store.id))

    def test_vendor_xml_import(self) -> None:
        content = (
            b'<vendors>'
            b'<vendor><name>Acme</name><email>acme@example.com</email><phone>555-0100</phone></vendor>'
            b'<vendor><name></name><email>blank@example.com</email></vendor>'
            b'</vendors>'
        )

        result = import_vendors(
            self.db,
            principal=self.store_admin,
            store_id=None,
            filename='vendors.xml',
            content=content,
        )

        self.assertEqual(result.errors, ['Row 3: Vendor name is required'])
        vendor = self.db.execute(select(Vendor)).scalar_one()
        self.assertEqual((vendor.phone, vendor.store_id), ('555-0100', self.store.id))

    def test_error_list_is_capped(self) -> None:
        result = import_assets(
            self.db,
            principal=self.master,
            store_id=self.store.id,
            filename='assets.csv',
            content=b'Name,Location\n' + b',x\n' * 5,
        )

        self.assertEqual(result.failed_count, 5)
        self.assertEqual(len(result.as_dict(error_limit=2)['errors']), 2)

    def test_vendor_template_has_expected_headers(self) -> None:
        workbook = load_workbook(io.BytesIO(vendor_template_xlsx()))
        headers = [cell.value for cell in workbook.active[1]]
        self.assertEqual(headers, VENDOR_TEMPLATE_HEADERS)


if __name__ == '__main__':
    unittest.main()
