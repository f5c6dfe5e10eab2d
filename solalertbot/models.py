import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .constants import QUEUE_PENDING
from .helpers import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(AsyncAttrs, DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    wallet_address: Mapped[str] = mapped_column(String(44), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(255))
    discord_user_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def recipient_for(self, channel: str) -> Optional[str]:
        return {"email": self.email, "telegram": self.telegram_chat_id,
                "discord": self.discord_user_id}.get(channel) or None


class Alert(Base):
    __tablename__ = "token_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_address: Mapped[str] = mapped_column(String(44), nullable=False)
    token_name: Mapped[Optional[str]] = mapped_column(String(255))
    token_symbol: Mapped[Optional[str]] = mapped_column(String(32))
    threshold_type: Mapped[str] = mapped_column(String(20), nullable=False)   # price|market_cap
    threshold_value: Mapped[Decimal] = mapped_column(Numeric(30, 8), nullable=False)
    comparison: Mapped[str] = mapped_column(String(10), nullable=False)       # above|below
    channel: Mapped[str] = mapped_column(String(20), nullable=False)          # email|telegram|discord
    circulating_supply: Mapped[Optional[Decimal]] = mapped_column(Numeric(30, 8))
    market_cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(30, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_triggered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cleared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_token_alerts_user", "user_id"),
        Index("ix_token_alerts_token", "token_address"),
        Index("ix_token_alerts_active", "is_active", "is_triggered"),
    )

    @property
    def label(self) -> str:
        return self.token_symbol or self.token_name or f"{self.token_address[:4]}…{self.token_address[-4:]}"


class NotificationQueueEntry(Base):
    __tablename__ = "notification_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    alert_id: Mapped[str] = mapped_column(ForeignKey("token_alerts.id", ondelete="CASCADE"), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    subject: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=QUEUE_PENDING, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_notification_queue_status", "status", "created_at"),
    )


# ---- In-memory shapes ----

@dataclass
class MarketData:
    address: str
    price: Optional[float]
    market_cap: Optional[float]
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    name: str = ""
    symbol: str = ""
    source: str = "unknown"

@dataclass
class MonitoredToken:
    address: str
    name: str = ""
    symbol: str = ""
    circulating_supply: Optional[float] = None
    last_observed_price: Optional[float] = None     # quote price in SOL
    updated_ts: float = 0.0

@dataclass
class SwapEvent:
    token: str
    price_in_quote: float
    timestamp: Optional[int] = None
    tx_ref: str = ""
    extra: dict = field(default_factory=dict)
