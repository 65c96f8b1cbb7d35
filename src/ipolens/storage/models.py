"""SQLAlchemy ORM table for persisted IPOs."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class IpoRow(Base):
    """One IPO, keyed by canonical symbol. Rows are never deleted."""

    __tablename__ = "ipos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    company_name: Mapped[str] = mapped_column(String(255))

    status: Mapped[str | None] = mapped_column(String(16), index=True)
    ipo_type: Mapped[str | None] = mapped_column(String(16))
    sector: Mapped[str | None] = mapped_column(String(128))
    external_id: Mapped[str | None] = mapped_column(String(64))

    open_date: Mapped[date | None] = mapped_column(Date)
    close_date: Mapped[date | None] = mapped_column(Date)
    allotment_date: Mapped[date | None] = mapped_column(Date)
    listing_date: Mapped[date | None] = mapped_column(Date)

    price_min: Mapped[float | None] = mapped_column(Float)
    price_max: Mapped[float | None] = mapped_column(Float)
    lot_size: Mapped[int | None] = mapped_column(Integer)
    issue_size_crores: Mapped[float | None] = mapped_column(Float)
    fresh_issue_crores: Mapped[float | None] = mapped_column(Float)
    ofs_ratio: Mapped[float | None] = mapped_column(Float)

    revenue_growth: Mapped[float | None] = mapped_column(Float)
    ebitda_margin: Mapped[float | None] = mapped_column(Float)
    pat_margin: Mapped[float | None] = mapped_column(Float)
    roe: Mapped[float | None] = mapped_column(Float)
    roce: Mapped[float | None] = mapped_column(Float)
    debt_to_equity: Mapped[float | None] = mapped_column(Float)
    pe_ratio: Mapped[float | None] = mapped_column(Float)
    pb_ratio: Mapped[float | None] = mapped_column(Float)
    sector_pe_median: Mapped[float | None] = mapped_column(Float)
    promoter_holding: Mapped[float | None] = mapped_column(Float)
    post_ipo_promoter_holding: Mapped[float | None] = mapped_column(Float)

    subscription_qib: Mapped[float | None] = mapped_column(Float)
    subscription_nii: Mapped[float | None] = mapped_column(Float)
    subscription_retail: Mapped[float | None] = mapped_column(Float)
    subscription_employee: Mapped[float | None] = mapped_column(Float)
    subscription_total: Mapped[float | None] = mapped_column(Float)

    gmp: Mapped[float | None] = mapped_column(Float)
    gmp_percent: Mapped[float | None] = mapped_column(Float)
    expected_listing_price: Mapped[float | None] = mapped_column(Float)
    gmp_trend: Mapped[str | None] = mapped_column(String(16))

    sources: Mapped[list[str]] = mapped_column(JSON, default=list)
    confidence: Mapped[str] = mapped_column(String(16), default="low")
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    conflicts: Mapped[list[str]] = mapped_column(JSON, default=list)

    fundamentals_score: Mapped[float | None] = mapped_column(Float)
    valuation_score: Mapped[float | None] = mapped_column(Float)
    governance_score: Mapped[float | None] = mapped_column(Float)
    overall_score: Mapped[float | None] = mapped_column(Float, index=True)
    risk_level: Mapped[str | None] = mapped_column(String(16))
    red_flags: Mapped[list[str]] = mapped_column(JSON, default=list)
    pros: Mapped[list[str]] = mapped_column(JSON, default=list)

    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"IpoRow(symbol={self.symbol!r}, status={self.status!r})"
