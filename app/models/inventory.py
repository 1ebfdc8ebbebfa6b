# app/models/inventory.py
"""
Inventory provider feeds and their mapping onto catalog medications.

InventoryItem rows belong to exactly one provider and are only written by that
provider's sync. Each sync stamps its rows with the next `sync_generation` and
flips `InventoryProvider.sync_generation` in the same commit; readers only
consider items whose generation matches their provider's current one, so a
snapshot becomes visible all at once.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class ConnectionStatus(str, PyEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ProviderType(str, PyEnum):
    SIMULATION = "simulation"
    RXWARE = "rxware"
    MCKESSON = "mckesson"
    PIONEERRX = "pioneerrx"
    CARDINAL = "cardinal"
    GENERIC = "generic"


class MappingType(str, PyEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class MappingStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class InventoryProvider(Base):
    __tablename__ = "inventory_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    provider_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Connection config
    api_endpoint: Mapped[str | None] = mapped_column(String(500), nullable=True)
    api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    connection_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ConnectionStatus.DISCONNECTED.value,
        server_default=text("'disconnected'"),
    )
    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    sync_frequency: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=60,
        doc="Minutes between scheduled syncs.",
    )
    last_sync_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_generation: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("provider_id", "external_id", name="uq_inventory_items_provider_external"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    provider_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("inventory_providers.id"),
        nullable=False,
        index=True,
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_ndc: Mapped[str | None] = mapped_column(String(50), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    wholesale_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    retail_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reorder_point: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reorder_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    supplier_info: Mapped[str | None] = mapped_column(String(255), nullable=True)

    raw_data: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
        doc="Untouched provider payload. Never read by core logic.",
    )

    sync_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class InventoryMapping(Base):
    """
    Links a catalog medication to one provider item.

    At most one active mapping per medication is primary; the partial unique
    index backs up the locking in the reconciler.
    """

    __tablename__ = "inventory_mappings"
    __table_args__ = (
        UniqueConstraint(
            "medication_id",
            "inventory_item_id",
            name="uq_inventory_mappings_medication_item",
        ),
        CheckConstraint(
            "mapping_confidence IS NULL OR (mapping_confidence >= 0 AND mapping_confidence <= 1)",
            name="ck_inventory_mappings_confidence_range",
        ),
        Index(
            "uq_inventory_mappings_one_primary",
            "medication_id",
            unique=True,
            postgresql_where=text("is_primary AND mapping_status = 'active'"),
            sqlite_where=text("is_primary = 1 AND mapping_status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    medication_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("medications.id"),
        nullable=False,
        index=True,
    )
    inventory_item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("inventory_items.id"),
        nullable=False,
        index=True,
    )

    is_primary: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    mapping_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mapping_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MappingStatus.ACTIVE.value,
        server_default=text("'active'"),
    )
    mapping_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
