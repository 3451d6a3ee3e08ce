"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from opshub.db.base import Base
from opshub.db.types import EncryptedString, JSONBag
from opshub.utils.datetime_utils import utcnow
from opshub.utils.normalization import normalize_phone


class ClientProfile(Base):
    """
    Per-client settings (1:1 with a user whose role is client).

    Holds the call provider credentials (secrets encrypted at rest), the
    business-specific classification prompt, the auto-star flag and the
    incremental sync cursor.
    """

    __tablename__ = "client_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # CallTrackingMetrics credentials
    ctm_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ctm_api_key: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    ctm_api_secret: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)

    ai_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_star_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Notification target for call alerts; falls back to the first admin
    account_manager_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Max started_at seen by the last successful sync
    ctm_sync_cursor: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])

    @property
    def has_ctm_credentials(self) -> bool:
        return bool(self.ctm_account_id and self.ctm_api_key and self.ctm_api_secret)


class ActiveClient(Base):
    """A client's own customer; used to recognize returning callers."""

    __tablename__ = "active_clients"
    __table_args__ = (
        Index("idx_active_clients_owner_phone", "owner_user_id", "client_phone_normalized"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_phone_normalized: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Comma-joined attribution list
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    funnel_data: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    services: Mapped[list["ClientService"]] = relationship(
        back_populates="active_client", cascade="all, delete-orphan"
    )

    @validates("client_phone")
    def _track_normalized_phone(self, key: str, value: str | None) -> str | None:
        self.client_phone_normalized = normalize_phone(value)
        return value


class ClientService(Base):
    """Service agreed with an active client; price data is redacted after 90 days."""

    __tablename__ = "client_services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    active_client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("active_clients.id", ondelete="CASCADE"), nullable=False
    )
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    agreed_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    agreed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    redacted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    active_client: Mapped["ActiveClient"] = relationship(back_populates="services")
