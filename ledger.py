"""
Discount ledger: one DailyDiscountLog row per price event.

A row is created when a discount is applied and mutated in place when it is
reverted (`DiscountLogEntry.mark_reverted`), so there is exactly one
authoritative row per price event. Column names follow the Prisma schema the
admin app already migrated.
"""
from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, List

from sqlalchemy import String, Float, Integer, Boolean, Text, DateTime, Index, select, func, delete
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from db import Base, session_scope
from discounts import Product, Discount

NOTE_AUTO_APPLIED = "Auto Discount Applied"
NOTE_AUTO_REVERTED = "Auto Discount Reverted"
NOTE_MANUAL = "Manual UI Discount"
AUTO_MARKER = "Auto Discount"

LOG_KINDS = {"api": AUTO_MARKER, "manual": NOTE_MANUAL}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return uuid.uuid4().hex


class DiscountLogEntry(Base):
    __tablename__ = "DailyDiscountLog"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)

    product_id: Mapped[str] = mapped_column("productId", String(255), nullable=False)
    product_title: Mapped[str] = mapped_column("productTitle", Text, nullable=False)
    variant_id: Mapped[str] = mapped_column("variantId", String(255), nullable=False)
    variant_title: Mapped[Optional[str]] = mapped_column("variantTitle", Text, nullable=True)

    original_price: Mapped[float] = mapped_column("originalPrice", Float, nullable=False)
    discounted_price: Mapped[float] = mapped_column("discountedPrice", Float, nullable=False)
    compare_at_price: Mapped[Optional[float]] = mapped_column("compareAtPrice", Float, nullable=True)
    cost_price: Mapped[Optional[float]] = mapped_column("costPrice", Float, nullable=True)
    profit_margin: Mapped[Optional[float]] = mapped_column("profitMargin", Float, nullable=True)
    discount_percentage: Mapped[float] = mapped_column("discountPercentage", Float, nullable=False)
    savings_amount: Mapped[float] = mapped_column("savingsAmount", Float, nullable=False)
    savings_percentage: Mapped[float] = mapped_column("savingsPercentage", Float, nullable=False)
    currency_code: Mapped[str] = mapped_column("currencyCode", String(10), nullable=False, default="USD")

    applied_at: Mapped[datetime] = mapped_column("appliedAt", DateTime, nullable=False, default=utcnow)
    applied_by_user_id: Mapped[Optional[str]] = mapped_column("appliedByUserId", String(255), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column("imageUrl", Text, nullable=True)
    inventory_quantity: Mapped[Optional[int]] = mapped_column("inventoryQuantity", Integer, nullable=True)
    is_random_discount: Mapped[bool] = mapped_column("isRandomDiscount", Boolean, nullable=False, default=True)

    is_reverted: Mapped[bool] = mapped_column("isReverted", Boolean, nullable=False, default=False)
    reverted_at: Mapped[Optional[datetime]] = mapped_column("revertedAt", DateTime, nullable=True)
    revert_price_before: Mapped[Optional[float]] = mapped_column("revertPriceBefore", Float, nullable=True)
    revert_price_after: Mapped[Optional[float]] = mapped_column("revertPriceAfter", Float, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("DailyDiscountLog_shop_idx", "shop"),
        Index("DailyDiscountLog_variantId_idx", "variantId"),
        Index("DailyDiscountLog_appliedAt_idx", "appliedAt"),
    )

    def __repr__(self) -> str:
        state = "reverted" if self.is_reverted else "applied"
        return f"<DiscountLogEntry {self.shop}:{self.variant_id} {self.original_price}->{self.discounted_price} {state}>"

    @property
    def is_auto(self) -> bool:
        return AUTO_MARKER in (self.notes or "")

    def mark_reverted(self, when: datetime) -> bool:
        """Applied -> Reverted. Returns False when the row was already reverted."""
        if self.is_reverted:
            return False
        self.is_reverted = True
        self.reverted_at = when
        self.revert_price_before = self.discounted_price
        self.revert_price_after = self.original_price
        if self.is_auto:
            self.notes = NOTE_AUTO_REVERTED
        else:
            self.notes = f"{self.notes or NOTE_MANUAL} Reverted"
        return True

    def to_api_dict(self) -> dict:
        return {
            "id": self.id,
            "shop": self.shop,
            "productId": self.product_id,
            "productTitle": self.product_title,
            "variantId": self.variant_id,
            "variantTitle": self.variant_title,
            "originalPrice": self.original_price,
            "discountedPrice": self.discounted_price,
            "compareAtPrice": self.compare_at_price,
            "costPrice": self.cost_price,
            "profitMargin": self.profit_margin,
            "discountPercentage": self.discount_percentage,
            "savingsAmount": self.savings_amount,
            "savingsPercentage": self.savings_percentage,
            "currencyCode": self.currency_code,
            "imageUrl": self.image_url,
            "inventoryQuantity": self.inventory_quantity,
            "appliedAt": self.applied_at.isoformat() if self.applied_at else None,
            "isRandomDiscount": self.is_random_discount,
            "isReverted": self.is_reverted,
            "revertedAt": self.reverted_at.isoformat() if self.reverted_at else None,
            "notes": self.notes,
        }


class DiscountLedger:
    """
    Persistence for discount events, one short transaction per call.
    Write errors (SQLAlchemyError) propagate to the caller.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def record_applied(
        self,
        shop: str,
        product: Product,
        discount: Discount,
        product_gid: str | None = None,
        notes: str = NOTE_AUTO_APPLIED,
        applied_by_user_id: str | None = None,
    ) -> DiscountLogEntry:
        entry = DiscountLogEntry(
            shop=shop,
            product_id=product_gid or product.id,
            product_title=product.title,
            variant_id=product.variant_id,
            variant_title=product.variant_title,
            original_price=discount.original_price,
            discounted_price=discount.discounted_price,
            compare_at_price=product.selling_price,
            cost_price=product.cost,
            profit_margin=discount.profit_margin,
            discount_percentage=discount.discount_percentage,
            savings_amount=discount.savings_amount,
            savings_percentage=discount.savings_percentage,
            currency_code=product.currency_code or "USD",
            applied_at=self.clock(),
            applied_by_user_id=applied_by_user_id,
            image_url=product.image_url,
            inventory_quantity=product.inventory_quantity,
            is_random_discount=True,
            is_reverted=False,
            notes=notes,
        )
        with session_scope(self.session_factory) as s:
            s.add(entry)
            s.flush()
        return entry

    def get(self, entry_id: str) -> DiscountLogEntry | None:
        with session_scope(self.session_factory) as s:
            return s.get(DiscountLogEntry, entry_id)

    def latest_active_for_variant(self, shop: str, variant_id: str) -> DiscountLogEntry | None:
        stmt = (
            select(DiscountLogEntry)
            .where(
                DiscountLogEntry.shop == shop,
                DiscountLogEntry.variant_id == variant_id,
                DiscountLogEntry.is_reverted.is_(False),
            )
            .order_by(DiscountLogEntry.applied_at.desc())
            .limit(1)
        )
        with session_scope(self.session_factory) as s:
            return s.scalars(stmt).first()

    def find_active_auto_discounts(self, shop: str, lookback_hours: int = 24) -> List[DiscountLogEntry]:
        """Auto discounts applied within the lookback window and not yet reverted, newest first."""
        since = self.clock() - timedelta(hours=lookback_hours)
        stmt = (
            select(DiscountLogEntry)
            .where(
                DiscountLogEntry.shop == shop,
                DiscountLogEntry.is_random_discount.is_(True),
                DiscountLogEntry.is_reverted.is_(False),
                DiscountLogEntry.applied_at >= since,
                DiscountLogEntry.notes.ilike(f"%{NOTE_AUTO_APPLIED}%"),
            )
            .order_by(DiscountLogEntry.applied_at.desc())
        )
        with session_scope(self.session_factory) as s:
            return list(s.scalars(stmt))

    def mark_reverted(self, entry: DiscountLogEntry) -> bool:
        """
        Persist the Applied -> Reverted transition and mirror it onto `entry`.
        Returns False when the stored row was already reverted.
        """
        when = self.clock()
        with session_scope(self.session_factory) as s:
            row = s.get(DiscountLogEntry, entry.id)
            if row is None:
                raise LookupError(f"Discount log {entry.id} not found")
            changed = row.mark_reverted(when)
        if changed:
            entry.mark_reverted(when)
        return changed

    def auto_discount_stats(self, shop: str, lookback_hours: int = 24) -> dict:
        since = self.clock() - timedelta(hours=lookback_hours)
        stmt = (
            select(DiscountLogEntry.notes, func.count(DiscountLogEntry.id))
            .where(
                DiscountLogEntry.shop == shop,
                DiscountLogEntry.is_random_discount.is_(True),
                DiscountLogEntry.applied_at >= since,
                DiscountLogEntry.notes.ilike(f"%{AUTO_MARKER}%"),
            )
            .group_by(DiscountLogEntry.notes)
        )
        stats = {"total": 0, "applied": 0, "reverted": 0}
        with session_scope(self.session_factory) as s:
            for notes, n in s.execute(stmt):
                if "Applied" in (notes or ""):
                    stats["applied"] += n
                if "Reverted" in (notes or ""):
                    stats["reverted"] += n
                stats["total"] += n
        return stats

    def recent_logs(self, shop: str, kind: str = "api", skip: int = 0, take: int = 20) -> List[DiscountLogEntry]:
        if kind not in LOG_KINDS:
            raise ValueError(f"Unknown log kind: {kind}")
        stmt = (
            select(DiscountLogEntry)
            .where(DiscountLogEntry.shop == shop, DiscountLogEntry.notes.ilike(f"%{LOG_KINDS[kind]}%"))
            .order_by(DiscountLogEntry.applied_at.desc())
            .offset(skip)
            .limit(take)
        )
        with session_scope(self.session_factory) as s:
            return list(s.scalars(stmt))

    def active_discounts(self, shop: str, sort: str = "newest", limit: int = 4) -> List[DiscountLogEntry]:
        order = {
            "highest_discount": DiscountLogEntry.savings_percentage.desc(),
            "lowest_price": DiscountLogEntry.discounted_price.asc(),
        }.get(sort, DiscountLogEntry.applied_at.desc())
        stmt = (
            select(DiscountLogEntry)
            .where(DiscountLogEntry.shop == shop, DiscountLogEntry.is_reverted.is_(False))
            .order_by(order)
            .limit(limit)
        )
        with session_scope(self.session_factory) as s:
            return list(s.scalars(stmt))

    def delete_for_shop(self, shop: str) -> int:
        with session_scope(self.session_factory) as s:
            result = s.execute(delete(DiscountLogEntry).where(DiscountLogEntry.shop == shop))
            return result.rowcount or 0
