"""
Tenant model - an account owning integrations, customers and leads.
Holds the shared webhook secret for lead/customer endpoints and the
Telegram destination used for notifications.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from astra.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)

    # wh_ + 40 hex chars, generated by the secret registry
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(64), unique=True)

    # Telegram destination (bot token overrides the global default)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(64))
    telegram_bot_token: Mapped[Optional[str]] = mapped_column(String(128))
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def wants_telegram(self) -> bool:
        return bool(self.notifications_enabled and self.telegram_chat_id)

    def __repr__(self) -> str:
        return f"<Tenant {self.name}>"
