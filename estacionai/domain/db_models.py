from datetime import datetime
from typing import Optional

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    String, Integer, Text, DateTime, ForeignKey, Index, UniqueConstraint, func,
)

class Base(DeclarativeBase): pass

class CompanyRow(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tax_id: Mapped[str] = mapped_column(String(14), nullable=False, unique=True)    # CNPJ
    email: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    address: Mapped[Optional[str]] = mapped_column(Text)
    total_spots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

class AdministratorRow(Base):
    __tablename__ = "administrators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

class VehicleRow(Base):
    __tablename__ = "vehicles"
    __table_args__ = (UniqueConstraint("company_id", "plate", name="uq_vehicles_company_plate"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    plate: Mapped[str] = mapped_column(String(10), nullable=False)   # normalizada (upper, sin espacios)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(100))
    color: Mapped[Optional[str]] = mapped_column(String(50))

class RateConfigRow(Base):
    __tablename__ = "rate_configs"
    __table_args__ = (UniqueConstraint("company_id", "category", name="uq_rate_configs_company_category"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    hourly_rate: Mapped[int] = mapped_column(Integer, nullable=False)     # centavos
    fraction_rate: Mapped[int] = mapped_column(Integer, nullable=False)   # centavos por 15 min

class LedgerEntryRow(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False)
    vehicle_id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)          # entry | exit
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    entry_id: Mapped[Optional[int]] = mapped_column(ForeignKey("ledger_entries.id"))   # solo exit
    charge: Mapped[Optional[int]] = mapped_column(Integer)
    elapsed_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    payment_method: Mapped[Optional[str]] = mapped_column(String(16))
    document_number: Mapped[Optional[str]] = mapped_column(String(64))

Index("ix_ledger_vehicle_kind_time", LedgerEntryRow.vehicle_id, LedgerEntryRow.kind, LedgerEntryRow.recorded_at)
Index("ix_ledger_company_time", LedgerEntryRow.company_id, LedgerEntryRow.recorded_at)

class SpotRow(Base):
    __tablename__ = "spots"
    __table_args__ = (UniqueConstraint("company_id", "number", name="uq_spots_company_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="available")
    vehicle_id: Mapped[Optional[int]] = mapped_column(ForeignKey("vehicles.id"))
    entry_id: Mapped[Optional[int]] = mapped_column(ForeignKey("ledger_entries.id"))
    entered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    estimated_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

Index("ix_spots_company_status", SpotRow.company_id, SpotRow.status)
