from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Id = BigInteger().with_variant(Integer, 'sqlite')


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    MASTER_ADMIN = 'MASTER_ADMIN'
    STORE_ADMIN = 'STORE_ADMIN'
    ADMIN = 'ADMIN'
    TECHNICIAN = 'TECHNICIAN'
    VENDOR = 'VENDOR'
    USER = 'USER'


class SessionKind(str, Enum):
    WEB = 'WEB'
    MOBILE = 'MOBILE'


class AssetStatus(str, Enum):
    ACTIVE = 'Active'
    DOWN = 'Down'
    RETIRED = 'Retired'


class WorkOrderStatus(str, Enum):
    OPEN = 'Open'
    IN_PROGRESS = 'In Progress'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'
    PENDING_REVIEW = 'Pending Review'


class Priority(str, Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


class RequestStatus(str, Enum):
    OPEN = 'Open'
    APPROVED = 'Approved'
    REJECTED = 'Rejected'
    CONVERTED = 'Converted'


class TransferType(str, Enum):
    ASSET = 'ASSET'
    INVENTORY = 'INVENTORY'


class TechnicianStatus(str, Enum):
    OFFLINE = 'offline'
    ONLINE = 'online'
    WORK_ASSIGNED = 'work_assigned'


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'Draft'
    PENDING_APPROVAL = 'Pending Approval'
    APPROVED = 'Approved'
    ORDERED = 'Ordered'
    RECEIVED = 'Received'
    CANCELLED = 'Cancelled'


class Division(Base):
    __tablename__ = 'divisions'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class District(Base):
    __tablename__ = 'districts'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    division_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('divisions.id', ondelete='CASCADE'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class StoreCategory(Base):
    __tablename__ = 'store_categories'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), unique=True)
    qr_code: Mapped[str | None] = mapped_column(String(64), unique=True)
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(Text)
    state: Mapped[str | None] = mapped_column(Text)
    zip_code: Mapped[str | None] = mapped_column(String(32))
    timezone: Mapped[str | None] = mapped_column(String(64))
    district_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('districts.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class StoreCategoryLink(Base):
    __tablename__ = 'store_category_links'

    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), primary_key=True)
    category_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('store_categories.id', ondelete='CASCADE'), primary_key=True)


class Technician(Base):
    __tablename__ = 'technicians'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(64))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    status: Mapped[TechnicianStatus] = mapped_column(
        _enum(TechnicianStatus, 'technician_status'),
        nullable=False,
        default=TechnicianStatus.OFFLINE,
        server_default='offline',
    )
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class Vendor(Base):
    __tablename__ = 'vendors'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(64))
    service_on: Mapped[str | None] = mapped_column(Text)
    note: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False, default=UserRole.USER)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    technician_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('technicians.id', ondelete='SET NULL'), unique=True)
    vendor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('vendors.id', ondelete='SET NULL'), unique=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow, server_default=func.now()
    )


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    attempted_email: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    kind: Mapped[SessionKind] = mapped_column(
        _enum(SessionKind, 'session_kind'), nullable=False, default=SessionKind.WEB, server_default='WEB'
    )
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class SequenceCounter(Base):
    __tablename__ = 'sequence_counters'

    scope: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class Asset(Base):
    __tablename__ = 'assets'
    __table_args__ = (
        UniqueConstraint('store_id', 'asset_number', name='assets_store_asset_number_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    asset_number: Mapped[int | None] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False, default='')
    status: Mapped[AssetStatus] = mapped_column(
        _enum(AssetStatus, 'asset_status'), nullable=False, default=AssetStatus.ACTIVE, server_default='Active'
    )
    make: Mapped[str | None] = mapped_column(Text)
    model: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    tool_check_out: Mapped[str | None] = mapped_column(Text)
    check_out_requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    default_wo_template: Mapped[str | None] = mapped_column(Text)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    parent_asset_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('assets.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class InventoryItem(Base):
    __tablename__ = 'inventory_items'
    __table_args__ = (
        CheckConstraint('quantity_on_hand >= 0', name='inventory_items_quantity_non_negative'),
        CheckConstraint('reorder_threshold >= 0', name='inventory_items_threshold_non_negative'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    part_number: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    location: Mapped[str | None] = mapped_column(Text)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class WorkOrder(Base):
    __tablename__ = 'work_orders'
    __table_args__ = (
        UniqueConstraint('work_order_number', name='work_orders_number_key'),
        UniqueConstraint('share_token', name='work_orders_share_token_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    work_order_number: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    problem_description: Mapped[str | None] = mapped_column(Text)
    help_description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[WorkOrderStatus] = mapped_column(
        _enum(WorkOrderStatus, 'work_order_status'), nullable=False, default=WorkOrderStatus.OPEN, server_default='Open'
    )
    priority: Mapped[Priority] = mapped_column(
        _enum(Priority, 'priority'), nullable=False, default=Priority.MEDIUM, server_default='Medium'
    )
    asset_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('assets.id', ondelete='SET NULL'))
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    assigned_to_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('technicians.id', ondelete='SET NULL'))
    vendor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('vendors.id', ondelete='SET NULL'))
    created_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    share_token: Mapped[str | None] = mapped_column(String(64))
    parts_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    due_date: Mapped[date | None] = mapped_column(Date)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow, server_default=func.now()
    )


class Note(Base):
    __tablename__ = 'notes'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    work_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('work_orders.id', ondelete='CASCADE'), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(Text, nullable=False, default='System')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class PreventiveSchedule(Base):
    __tablename__ = 'preventive_schedules'
    __table_args__ = (
        CheckConstraint('frequency_days > 0', name='preventive_schedules_frequency_positive'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    asset_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('assets.id', ondelete='CASCADE'), nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'))
    frequency_days: Mapped[int] = mapped_column(Integer, nullable=False)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class MaintenanceRequest(Base):
    __tablename__ = 'requests'
    __table_args__ = (
        UniqueConstraint('request_number', name='requests_number_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    request_number: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    asset_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('assets.id', ondelete='SET NULL'))
    priority: Mapped[Priority] = mapped_column(
        _enum(Priority, 'priority'), nullable=False, default=Priority.MEDIUM, server_default='Medium'
    )
    status: Mapped[RequestStatus] = mapped_column(
        _enum(RequestStatus, 'request_status'), nullable=False, default=RequestStatus.OPEN, server_default='Open'
    )
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='SET NULL'))
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    work_order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('work_orders.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class Transfer(Base):
    __tablename__ = 'transfers'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    type: Mapped[TransferType] = mapped_column(_enum(TransferType, 'transfer_type'), nullable=False)
    asset_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('assets.id', ondelete='SET NULL'))
    inventory_item_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_items.id', ondelete='SET NULL'))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    from_store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    to_store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    work_order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('work_orders.id', ondelete='SET NULL'))
    transferred_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'
    __table_args__ = (
        UniqueConstraint('store_id', 'po_number', name='purchase_orders_store_number_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    po_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        _enum(PurchaseOrderStatus, 'purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        server_default='Draft',
    )
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    vendor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('vendors.id', ondelete='SET NULL'))
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    tax: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0'))
    created_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())


class PurchaseOrderItem(Base):
    __tablename__ = 'purchase_order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='purchase_order_items_quantity_positive'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    inventory_item_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('inventory_items.id', ondelete='SET NULL'))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
