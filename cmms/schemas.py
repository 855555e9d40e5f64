"""Request bodies accepted by the JSON API.

Fields are mostly optional here; required-field and business-rule checks live
in the services so the error messages stay the same for JSON, form and import
callers.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    email: str = ''
    password: str = ''


class DivisionIn(BaseModel):
    name: str | None = None


class DistrictIn(BaseModel):
    name: str | None = None
    division_id: int | None = None


class StoreCategoryIn(BaseModel):
    name: str | None = None
    description: str | None = None
    color: str | None = None


class StoreIn(BaseModel):
    name: str | None = None
    code: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    timezone: str | None = None
    district_id: int | None = None
    category_ids: list[int] | None = None


class AssetIn(BaseModel):
    name: str | None = None
    location: str | None = None
    status: str | None = None
    make: str | None = None
    model: str | None = None
    category: str | None = None
    store_id: int | None = None
    parent_asset_id: int | None = None


class InventoryItemIn(BaseModel):
    name: str | None = None
    part_number: str | None = None
    quantity_on_hand: int | str | None = None
    reorder_threshold: int | str | None = None
    location: str | None = None
    store_id: int | None = None


class TechnicianIn(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    store_id: int | None = None
    active: bool | None = None


class TechnicianStatusIn(BaseModel):
    status: str | None = None


class CreateLoginIn(BaseModel):
    email: str | None = None
    password: str | None = None


class VendorIn(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    service_on: str | None = None
    note: str | None = None
    store_id: int | None = None
    password: str | None = None


class WorkOrderIn(BaseModel):
    title: str | None = None
    description: str | None = None
    problem_description: str | None = None
    help_description: str | None = None
    asset_id: int | None = None
    priority: str | None = None
    status: str | None = None
    assigned_to_id: int | str | None = None
    vendor_id: int | None = None
    due_date: date | None = None
    store_id: int | None = None
    parts_required: bool = False
    attachments: list[str] = Field(default_factory=list)


class WorkOrderUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None
    assigned_to_id: int | str | None = None
    vendor_id: int | None = None
    due_date: date | None = None
    completed_at: datetime | None = None
    parts_required: bool | None = None


class WorkOrderStatusIn(BaseModel):
    status: str | None = None


class PublicWorkOrderIn(BaseModel):
    qr_code: str | None = None
    title: str | None = None
    problem_description: str | None = None
    help_description: str | None = None
    priority: str | None = None
    asset_id: int | None = None
    parts_required: bool = False
    attachments: list[str] = Field(default_factory=list)


class NoteIn(BaseModel):
    work_order_id: int | None = None
    text: str | None = None
    author: str | None = None


class ScheduleIn(BaseModel):
    title: str | None = None
    asset_id: int | None = None
    store_id: int | None = None
    frequency_days: int | None = None
    next_due_date: date | None = None
    active: bool | None = None


class RequestIn(BaseModel):
    title: str | None = None
    description: str | None = None
    asset_id: int | None = None
    priority: str | None = None
    store_id: int | None = None
    attachments: list[str] = Field(default_factory=list)


class RequestConvertIn(BaseModel):
    asset_id: int | None = None
    assigned_to_id: int | str | None = None
    due_date: date | None = None


class TransferIn(BaseModel):
    type: str | None = None
    asset_id: int | None = None
    inventory_item_id: int | None = None
    quantity: int | None = None
    from_store_id: int | None = None
    to_store_id: int | None = None
    work_order_id: int | None = None
    notes: str | None = None


class PurchaseOrderItemIn(BaseModel):
    description: str | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None
    inventory_item_id: int | None = None


class PurchaseOrderIn(BaseModel):
    name: str | None = None
    status: str | None = None
    store_id: int | None = None
    vendor_id: int | None = None
    order_date: date | None = None
    expected_date: date | None = None
    notes: str | None = None
    items: list[PurchaseOrderItemIn] = Field(default_factory=list)


class PurchaseOrderStatusIn(BaseModel):
    status: str | None = None


class UserIn(BaseModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None
    role: str | None = None
    store_id: int | None = None


class UserUpdate(BaseModel):
    name: str | None = None
    role: str | None = None
    store_id: int | None = None
    active: bool | None = None


class ResetPasswordIn(BaseModel):
    new_password: str | None = None


class ReportIn(BaseModel):
    store_id: int | None = None
    start_date: date | None = None
    end_date: date | None = None
