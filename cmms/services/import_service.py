"""Spreadsheet and XML bulk imports.

Every importer runs the same pipeline: read the upload into header-keyed rows,
map the flexible header spellings onto canonical field names, then validate and
insert one row at a time. A bad row is reported as ``Row N: message`` (N being
the spreadsheet row, so the first data row is 2) and never stops the batch.
Each accepted row is committed on its own.
"""
from __future__ import annotations

import csv
import io
import logging
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from xml.etree import ElementTree

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cmms.auth import Principal, can_see_all_stores, has_store_scope, resolve_target_store_id
from cmms.config import settings
from cmms.models import Asset, InventoryItem, Store, Vendor
from cmms.services.asset_service import parse_asset_status
from cmms.services.parsing import (
    cell_to_text,
    is_blank,
    is_valid_email,
    normalize_email,
    normalize_header,
    parse_leading_int,
    parse_yes,
)
from cmms.services.sequence_service import asset_scope, bump_sequence, next_sequence_value
from cmms.services.vendor_service import vendor_email_taken


logger = logging.getLogger(__name__)

LEGACY_SPREADSHEET_EXTENSIONS = {'xls', 'ods'}

ASSET_COLUMNS = {
    'asset id': 'asset_id',
    'assetid': 'asset_id',
    'asset_id': 'asset_id',
    'asset number': 'asset_id',
    'asset name': 'name',
    'assetname': 'name',
    'asset_name': 'name',
    'name': 'name',
    'parent asset id': 'parent_asset_number',
    'parentassetid': 'parent_asset_number',
    'parent_asset_id': 'parent_asset_number',
    'parent asset name': 'parent_asset_name',
    'parentassetname': 'parent_asset_name',
    'parent_asset_name': 'parent_asset_name',
    'location': 'location',
    'status': 'status',
    'make': 'make',
    'model': 'model',
    'category': 'category',
    'tool check-out': 'tool_check_out',
    'tool checkout': 'tool_check_out',
    'toolcheckout': 'tool_check_out',
    'tool_check_out': 'tool_check_out',
    'check-out requires approval': 'check_out_requires_approval',
    'checkout requires approval': 'check_out_requires_approval',
    'checkoutrequiresapproval': 'check_out_requires_approval',
    'check_out_requires_approval': 'check_out_requires_approval',
    'default wo template': 'default_wo_template',
    'defaultwotemplate': 'default_wo_template',
    'default_wo_template': 'default_wo_template',
}

INVENTORY_COLUMNS = {
    'name': 'name',
    'part name': 'name',
    'partname': 'name',
    'part number': 'part_number',
    'partnumber': 'part_number',
    'part_number': 'part_number',
    'part #': 'part_number',
    'quantity on hand': 'quantity_on_hand',
    'quantityonhand': 'quantity_on_hand',
    'quantity_on_hand': 'quantity_on_hand',
    'quantity': 'quantity_on_hand',
    'qty': 'quantity_on_hand',
    'reorder threshold': 'reorder_threshold',
    'reorderthreshold': 'reorder_threshold',
    'reorder_threshold': 'reorder_threshold',
    'threshold': 'reorder_threshold',
    'location': 'location',
}

VENDOR_COLUMNS = {
    'name': 'name',
    "vendor's name": 'name',
    'vendor name': 'name',
    'vendorname': 'name',
    'vendor_name': 'name',
    'email': 'email',
    'phone': 'phone',
    'service on': 'service_on',
    'serviceon': 'service_on',
    'service_on': 'service_on',
    'note': 'note',
    'store': 'store_code',
    'store code': 'store_code',
    'storecode': 'store_code',
    'location': 'store_code',
    'storeid': 'store_id',
    'store id': 'store_id',
    'store_id': 'store_id',
}

VENDOR_TEMPLATE_HEADERS = ['Name', 'Email', 'Phone', 'Service On', 'Note', 'Store Code']


@dataclass
class ImportResult:
    total: int = 0
    success_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)

    def succeeded(self) -> None:
        self.success_count += 1

    def failed(self, row_number: int, message: str) -> None:
        self.failed_count += 1
        self.errors.append(f'Row {row_number}: {message}')

    def as_dict(self, error_limit: int | None = None) -> dict:
        limit = settings.import_error_limit if error_limit is None else error_limit
        return {
            'total': self.total,
            'success_count': self.success_count,
            'failed_count': self.failed_count,
            'errors': self.errors[:limit],
        }


@dataclass(frozen=True)
class ImportRow:
    row_number: int
    values: dict[str, str]

    def get(self, key: str) -> str:
        return self.values.get(key, '')


def file_extension(filename: str | None) -> str:
    name = (filename or '').strip().lower()
    return name.rsplit('.', 1)[-1] if '.' in name else ''


def _table_to_rows(table: list[list[str]], columns: dict[str, str]) -> list[ImportRow]:
    if not table:
        return []
    header_map = [columns.get(normalize_header(header)) for header in table[0]]
    rows = []
    for offset, raw in enumerate(table[1:]):
        if all(is_blank(value) for value in raw):
            continue
        values: dict[str, str] = {}
        for canonical, value in zip(header_map, raw):
            # First matching column wins when two headers map to the same field.
            if canonical and canonical not in values:
                values[canonical] = value
        rows.append(ImportRow(row_number=offset + 2, values=values))
    return rows


def _read_xlsx(content: bytes) -> list[list[str]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValueError('Could not read the spreadsheet. Please upload a valid .xlsx file.') from exc
    try:
        sheet = workbook.active
        return [[cell_to_text(value) for value in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(content: bytes) -> list[list[str]]:
    try:
        text = content.decode('utf-8-sig')
    except UnicodeDecodeError as exc:
        raise ValueError('CSV files must be UTF-8 encoded.') from exc
    return [[value.strip() for value in row] for row in csv.reader(io.StringIO(text))]


def _read_vendor_xml(content: bytes) -> list[ImportRow]:
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as exc:
        raise ValueError('Could not parse the XML file.') from exc

    rows = []
    for index, element in enumerate(root.iter('vendor')):
        values: dict[str, str] = {}
        for child in element:
            canonical = VENDOR_COLUMNS.get(normalize_header(child.tag))
            if canonical and canonical not in values:
                values[canonical] = (child.text or '').strip()
        rows.append(ImportRow(row_number=index + 2, values=values))
    return rows


def read_import_rows(*, filename: str | None, content: bytes, columns: dict[str, str], allow_xml: bool = False) -> list[ImportRow]:
    extension = file_extension(filename)
    if not content:
        raise ValueError('No file provided.')
    if extension == 'xml' and allow_xml:
        return _read_vendor_xml(content)
    if extension == 'xlsx':
        return _table_to_rows(_read_xlsx(content), columns)
    if extension == 'csv':
        return _table_to_rows(_read_csv(content), columns)
    if extension in LEGACY_SPREADSHEET_EXTENSIONS:
        raise ValueError(f'.{extension} files are not supported. Please save the sheet as .xlsx or .csv.')
    accepted = '.xlsx, .csv or .xml' if allow_xml else '.xlsx or .csv'
    raise ValueError(f'Invalid file type. Please upload an {accepted} file.')


def _run_rows(db: Session, rows: list[ImportRow], handle_row: Callable[[ImportRow], None], *, label: str) -> ImportResult:
    result = ImportResult(total=len(rows))
    for row in rows:
        try:
            handle_row(row)
            db.commit()
        except ValueError as exc:
            db.rollback()
            result.failed(row.row_number, str(exc))
        except SQLAlchemyError:
            db.rollback()
            logger.exception('%s import failed to save row %s', label, row.row_number)
            result.failed(row.row_number, 'Could not be saved.')
        else:
            result.succeeded()
    logger.info(
        '%s import finished: %s total, %s imported, %s failed',
        label,
        result.total,
        result.success_count,
        result.failed_count,
    )
    return result


def _import_store_id(db: Session, principal: Principal, store_id: int | None) -> int:
    requested = store_id if can_see_all_stores(principal.role) else None
    target_store_id = resolve_target_store_id(principal, requested)
    if not db.get(Store, target_store_id):
        raise LookupError('Store not found.')
    return target_store_id


def import_assets(db: Session, *, principal: Principal, store_id: int | None, filename: str | None, content: bytes) -> ImportResult:
    target_store_id = _import_store_id(db, principal, store_id)
    rows = read_import_rows(filename=filename, content=content, columns=ASSET_COLUMNS)
    seen_numbers: set[int] = set()

    def _parent_id(row: ImportRow) -> int | None:
        parent_number = parse_leading_int(row.get('parent_asset_number'))
        if parent_number is not None:
            return db.execute(
                select(Asset.id).where(Asset.store_id == target_store_id, Asset.asset_number == parent_number)
            ).scalar_one_or_none()
        parent_name = row.get('parent_asset_name').strip()
        if parent_name:
            return db.execute(
                select(Asset.id)
                .where(Asset.store_id == target_store_id, func.lower(Asset.name) == parent_name.lower())
                .order_by(Asset.id.asc())
            ).scalars().first()
        return None

    def _handle(row: ImportRow) -> None:
        name = row.get('name').strip()
        if not name:
            raise ValueError('Asset name is required')

        asset_number = None
        if not is_blank(row.get('asset_id')):
            asset_number = parse_leading_int(row.get('asset_id'))
            if asset_number is None or asset_number <= 0:
                raise ValueError(f'Invalid Asset ID "{row.get("asset_id")}"')
            exists = db.execute(
                select(Asset.id).where(Asset.store_id == target_store_id, Asset.asset_number == asset_number)
            ).first()
            if exists or asset_number in seen_numbers:
                raise ValueError(f'Asset ID {asset_number} already exists')

        status = parse_asset_status(row.get('status'))
        parent_id = _parent_id(row)

        if asset_number is None:
            asset_number = next_sequence_value(db, asset_scope(target_store_id))
        else:
            bump_sequence(db, asset_scope(target_store_id), asset_number)

        db.add(
            Asset(
                asset_number=asset_number,
                name=name,
                location=row.get('location').strip(),
                status=status,
                make=row.get('make').strip() or None,
                model=row.get('model').strip() or None,
                category=row.get('category').strip() or None,
                tool_check_out=row.get('tool_check_out').strip() or None,
                check_out_requires_approval=parse_yes(row.get('check_out_requires_approval')),
                default_wo_template=row.get('default_wo_template').strip() or None,
                store_id=target_store_id,
                parent_asset_id=parent_id,
            )
        )
        db.flush()
        seen_numbers.add(asset_number)

    return _run_rows(db, rows, _handle, label='Asset')


def import_inventory(db: Session, *, principal: Principal, store_id: int | None, filename: str | None, content: bytes) -> ImportResult:
    target_store_id = _import_store_id(db, principal, store_id)
    rows = read_import_rows(filename=filename, content=content, columns=INVENTORY_COLUMNS)
    seen_part_numbers: set[str] = set()

    def _count(row: ImportRow, key: str, label: str) -> int:
        raw = row.get(key)
        if is_blank(raw):
            return 0
        value = parse_leading_int(raw)
        if value is None or value < 0:
            raise ValueError(f'Invalid {label}')
        return value

    def _handle(row: ImportRow) -> None:
        name = row.get('name').strip()
        if not name:
            raise ValueError('Part name is required')
        part_number = row.get('part_number').strip()
        if not part_number:
            raise ValueError('Part number is required')
        quantity = _count(row, 'quantity_on_hand', 'quantity on hand')
        threshold = _count(row, 'reorder_threshold', 'reorder threshold')

        key = part_number.lower()
        exists = db.execute(
            select(InventoryItem.id).where(
                InventoryItem.store_id == target_store_id,
                func.lower(InventoryItem.part_number) == key,
            )
        ).first()
        if exists or key in seen_part_numbers:
            raise ValueError(f'Part number {part_number} already exists')

        db.add(
            InventoryItem(
                name=name,
                part_number=part_number,
                quantity_on_hand=quantity,
                reorder_threshold=threshold,
                location=row.get('location').strip() or None,
                store_id=target_store_id,
            )
        )
        db.flush()
        seen_part_numbers.add(key)

    return _run_rows(db, rows, _handle, label='Inventory')


def _resolve_vendor_store(db: Session, row: ImportRow, default_store_id: int | None) -> int | None:
    raw_store_id = row.get('store_id').strip()
    if raw_store_id:
        store_id = parse_leading_int(raw_store_id)
        store = db.get(Store, store_id) if store_id is not None else None
        if not store:
            raise ValueError(f'Store not found: {raw_store_id}')
        return store.id

    reference = row.get('store_code').strip()
    if reference:
        store = db.execute(select(Store).where(Store.code == reference)).scalar_one_or_none()
        if store is None:
            store = db.execute(
                select(Store).where(func.lower(Store.name) == reference.lower()).order_by(Store.id.asc())
            ).scalars().first()
        if store is None:
            raise ValueError(f'Store not found: {reference}')
        return store.id

    return default_store_id


def import_vendors(db: Session, *, principal: Principal, store_id: int | None, filename: str | None, content: bytes) -> ImportResult:
    if can_see_all_stores(principal.role):
        default_store_id = store_id
        if default_store_id is not None and not db.get(Store, default_store_id):
            raise LookupError('Store not found.')
    else:
        default_store_id = resolve_target_store_id(principal, None)
    rows = read_import_rows(filename=filename, content=content, columns=VENDOR_COLUMNS, allow_xml=True)
    seen_emails: set[str] = set()

    def _handle(row: ImportRow) -> None:
        name = row.get('name').strip()
        if not name:
            raise ValueError('Vendor name is required')
        email = normalize_email(row.get('email'))
        if not is_valid_email(email):
            raise ValueError(f'Invalid email "{row.get("email")}"')
        if email in seen_emails or vendor_email_taken(db, email):
            raise ValueError(f'Email {email} already exists')

        vendor_store_id = _resolve_vendor_store(db, row, default_store_id)
        if not has_store_scope(principal, vendor_store_id):
            raise ValueError('You can only import vendors into your own store')

        db.add(
            Vendor(
                name=name,
                email=email,
                phone=row.get('phone').strip() or None,
                service_on=row.get('service_on').strip() or None,
                note=row.get('note').strip() or None,
                store_id=vendor_store_id,
                active=True,
            )
        )
        db.flush()
        seen_emails.add(email)

    return _run_rows(db, rows, _handle, label='Vendor')


def vendor_template_xlsx() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = 'Vendors'
    sheet.append(VENDOR_TEMPLATE_HEADERS)
    sheet.append(['Acme Refrigeration', 'service@acme-refrigeration.example', '555-0100', 'Walk-in coolers', '', 'STORE-001'])
    for column, width in zip('ABCDEF', (28, 36, 16, 24, 30, 14)):
        sheet.column_dimensions[column].width = width
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
