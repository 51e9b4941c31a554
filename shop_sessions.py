# shop_sessions.py: read-only view of the admin app's Shopify session table

from __future__ import annotations
from datetime import datetime
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, Text, select
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from db import Base, session_scope
from shopify_client import normalize_shop


class ShopSession(Base):
    """Rows are written by the OAuth install flow; this service only reads them."""

    __tablename__ = "Session"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_online: Mapped[bool] = mapped_column("isOnline", Boolean, nullable=False, default=False)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    access_token: Mapped[str] = mapped_column("accessToken", Text, nullable=False)


class SessionStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_shops(self) -> List[str]:
        stmt = select(ShopSession.shop).distinct().order_by(ShopSession.shop)
        with session_scope(self.session_factory) as s:
            return [shop for shop in s.scalars(stmt) if shop]

    def access_token(self, shop: str) -> str | None:
        # offline tokens do not expire; prefer them over online ones
        stmt = (
            select(ShopSession)
            .where(ShopSession.shop == normalize_shop(shop))
            .order_by(ShopSession.is_online.asc(), ShopSession.expires.desc())
        )
        with session_scope(self.session_factory) as s:
            for row in s.scalars(stmt):
                if row.access_token:
                    return row.access_token
        return None
