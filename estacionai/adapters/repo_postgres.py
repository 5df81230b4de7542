from datetime import datetime, timezone
from enum import Enum
from typing import Collection, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from estacionai.domain.db_models import (
    AdministratorRow, CompanyRow, LedgerEntryRow, RateConfigRow, SpotRow, VehicleRow,
)
from estacionai.domain.errors import DuplicateKey
from estacionai.domain.models import (
    Administrator, Company, LedgerEntry, LedgerKind, Occupancy, PaymentMethod,
    RateConfig, Spot, SpotStatus, Vehicle, VehicleCategory,
)

"""
Acceso a DB (SQLAlchemy async) detras de los puertos de application.ports.

- Cada SqlUnitOfWork es una AsyncSession = una transaccion.
- get(..., for_update=True) emite SELECT ... FOR UPDATE (en SQLite se ignora).
- swap_status es un UPDATE ... WHERE status IN (...): si otra transaccion ya
  cambio la vaga, rowcount = 0.
- IntegrityError -> DuplicateKey.
"""

M = TypeVar("M", bound=BaseModel)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _to(model: Type[M], row) -> M:
    data = {c.key: getattr(row, c.key) for c in row.__table__.columns}
    return model.model_validate({k: _utc(v) if isinstance(v, datetime) else v for k, v in data.items()})


def _plain(fields: dict) -> dict:
    return {k: v.value if isinstance(v, Enum) else v for k, v in fields.items()}


class _Repo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _flush(self, what: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKey(f"{what} choca con una fila existente", constraint=str(e.orig)) from e

    async def _one(self, stmt, for_update: bool = False):
        if for_update:
            stmt = stmt.with_for_update()
        res = await self.session.execute(stmt.execution_options(populate_existing=True))
        return res.scalar_one_or_none()


class SqlCompanyRepo(_Repo):
    async def get(self, company_id: int, *, for_update: bool = False) -> Optional[Company]:
        row = await self._one(select(CompanyRow).where(CompanyRow.id == company_id), for_update)
        return _to(Company, row) if row else None

    async def get_by_email(self, email: str) -> Optional[Company]:
        row = await self._one(select(CompanyRow).where(CompanyRow.email == email))
        return _to(Company, row) if row else None

    async def list(self) -> List[Company]:
        res = await self.session.execute(select(CompanyRow).order_by(CompanyRow.id))
        return [_to(Company, r) for r in res.scalars()]

    async def add(self, *, name, tax_id, email, password_hash, phone, address) -> Company:
        row = CompanyRow(name=name, tax_id=tax_id, email=email, password_hash=password_hash,
                         phone=phone, address=address, total_spots=0,
                         created_at=datetime.now(timezone.utc))
        self.session.add(row)
        await self._flush(f"empresa {email}/{tax_id}")
        return _to(Company, row)

    async def update(self, company_id: int, **fields) -> Company:
        await self.session.execute(
            update(CompanyRow).where(CompanyRow.id == company_id).values(**_plain(fields))
            .execution_options(synchronize_session=False)
        )
        return await self.get(company_id)

    async def delete(self, company_id: int) -> None:
        # datos del tenant, en orden de dependencias
        for table in (SpotRow, LedgerEntryRow, RateConfigRow, VehicleRow):
            await self.session.execute(
                delete(table).where(table.company_id == company_id).execution_options(synchronize_session=False)
            )
        await self.session.execute(
            delete(CompanyRow).where(CompanyRow.id == company_id).execution_options(synchronize_session=False)
        )


class SqlAdminRepo(_Repo):
    async def get_by_email(self, email: str) -> Optional[Administrator]:
        row = await self._one(select(AdministratorRow).where(AdministratorRow.email == email))
        return _to(Administrator, row) if row else None

    async def add(self, *, name: str, email: str, password_hash: str) -> Administrator:
        row = AdministratorRow(name=name, email=email, password_hash=password_hash)
        self.session.add(row)
        await self._flush(f"administrador {email}")
        return _to(Administrator, row)


class SqlVehicleRepo(_Repo):
    async def get(self, vehicle_id: int, *, for_update: bool = False) -> Optional[Vehicle]:
        row = await self._one(select(VehicleRow).where(VehicleRow.id == vehicle_id), for_update)
        return _to(Vehicle, row) if row else None

    async def get_by_plate(self, company_id: int, plate: str, *, for_update: bool = False) -> Optional[Vehicle]:
        stmt = select(VehicleRow).where(VehicleRow.company_id == company_id, VehicleRow.plate == plate)
        row = await self._one(stmt, for_update)
        return _to(Vehicle, row) if row else None

    async def list(self, company_id: int) -> List[Vehicle]:
        res = await self.session.execute(
            select(VehicleRow).where(VehicleRow.company_id == company_id).order_by(VehicleRow.plate)
        )
        return [_to(Vehicle, r) for r in res.scalars()]

    async def add(self, *, company_id: int, plate: str, category: VehicleCategory,
                  model: Optional[str], color: Optional[str]) -> Vehicle:
        row = VehicleRow(company_id=company_id, plate=plate, category=VehicleCategory(category).value,
                         model=model, color=color)
        self.session.add(row)
        await self._flush(f"vehiculo {plate}")
        return _to(Vehicle, row)

    async def update(self, vehicle_id: int, **fields) -> Vehicle:
        await self.session.execute(
            update(VehicleRow).where(VehicleRow.id == vehicle_id).values(**_plain(fields))
            .execution_options(synchronize_session=False)
        )
        return await self.get(vehicle_id)

    async def delete(self, vehicle_id: int) -> None:
        await self.session.execute(
            delete(VehicleRow).where(VehicleRow.id == vehicle_id).execution_options(synchronize_session=False)
        )


class SqlRateRepo(_Repo):
    async def get(self, company_id: int, category: VehicleCategory) -> Optional[RateConfig]:
        stmt = select(RateConfigRow).where(
            RateConfigRow.company_id == company_id,
            RateConfigRow.category == VehicleCategory(category).value,
        )
        row = await self._one(stmt)
        return _to(RateConfig, row) if row else None

    async def list(self, company_id: int) -> List[RateConfig]:
        res = await self.session.execute(
            select(RateConfigRow).where(RateConfigRow.company_id == company_id).order_by(RateConfigRow.category)
        )
        return [_to(RateConfig, r) for r in res.scalars()]

    async def upsert(self, *, company_id: int, category: VehicleCategory,
                     hourly_rate: int, fraction_rate: int) -> RateConfig:
        category = VehicleCategory(category).value
        stmt = select(RateConfigRow).where(
            RateConfigRow.company_id == company_id, RateConfigRow.category == category
        )
        row = await self._one(stmt, for_update=True)
        if row is None:
            row = RateConfigRow(company_id=company_id, category=category)
            self.session.add(row)
        row.hourly_rate = hourly_rate
        row.fraction_rate = fraction_rate
        await self._flush(f"tarifa {company_id}/{category}")
        return _to(RateConfig, row)


class SqlLedgerRepo(_Repo):
    def _open(self):
        e = LedgerEntryRow
        s = aliased(LedgerEntryRow)
        closed = select(s.id).where(
            s.vehicle_id == e.vehicle_id,
            s.kind == LedgerKind.EXIT.value,
            (s.recorded_at > e.recorded_at) | (s.entry_id == e.id),
        ).exists()
        return select(e).where(e.kind == LedgerKind.ENTRY.value, ~closed)

    async def get(self, entry_id: int) -> Optional[LedgerEntry]:
        row = await self._one(select(LedgerEntryRow).where(LedgerEntryRow.id == entry_id))
        return _to(LedgerEntry, row) if row else None

    async def count_for_vehicle(self, vehicle_id: int) -> int:
        res = await self.session.execute(
            select(func.count()).select_from(LedgerEntryRow).where(LedgerEntryRow.vehicle_id == vehicle_id)
        )
        return res.scalar_one()

    async def open_entry(self, vehicle_id: int) -> Optional[LedgerEntry]:
        stmt = (
            self._open()
            .where(LedgerEntryRow.vehicle_id == vehicle_id)
            .order_by(LedgerEntryRow.recorded_at.desc(), LedgerEntryRow.id.desc())
            .limit(1)
        )
        res = await self.session.execute(stmt)
        row = res.scalars().first()
        return _to(LedgerEntry, row) if row else None

    async def open_entries(self, company_id: int) -> List[LedgerEntry]:
        stmt = (
            self._open()
            .where(LedgerEntryRow.company_id == company_id)
            .order_by(LedgerEntryRow.recorded_at.desc(), LedgerEntryRow.id.desc())
        )
        res = await self.session.execute(stmt)
        return [_to(LedgerEntry, r) for r in res.scalars()]

    async def append_entry(self, *, company_id: int, vehicle_id: int, at: datetime) -> LedgerEntry:
        row = LedgerEntryRow(company_id=company_id, vehicle_id=vehicle_id,
                             kind=LedgerKind.ENTRY.value, recorded_at=_utc(at), entry_id=None,
                             charge=None, elapsed_minutes=None, payment_method=None, document_number=None)
        self.session.add(row)
        await self._flush(f"entrada del vehiculo {vehicle_id}")
        return _to(LedgerEntry, row)

    async def append_exit(self, *, company_id: int, vehicle_id: int, at: datetime, entry_id: Optional[int],
                          charge: int, elapsed_minutes: int, payment_method: Optional[PaymentMethod],
                          document_number: Optional[str]) -> LedgerEntry:
        row = LedgerEntryRow(
            company_id=company_id, vehicle_id=vehicle_id, kind=LedgerKind.EXIT.value,
            recorded_at=_utc(at), entry_id=entry_id, charge=charge, elapsed_minutes=elapsed_minutes,
            payment_method=PaymentMethod(payment_method).value if payment_method else None,
            document_number=document_number,
        )
        self.session.add(row)
        await self._flush(f"salida del vehiculo {vehicle_id}")
        return _to(LedgerEntry, row)

    async def list(self, company_id: int, since: Optional[datetime] = None,
                   until: Optional[datetime] = None) -> List[LedgerEntry]:
        stmt = select(LedgerEntryRow).where(LedgerEntryRow.company_id == company_id)
        if since is not None:
            stmt = stmt.where(LedgerEntryRow.recorded_at >= _utc(since))
        if until is not None:
            stmt = stmt.where(LedgerEntryRow.recorded_at <= _utc(until))
        res = await self.session.execute(stmt.order_by(LedgerEntryRow.recorded_at, LedgerEntryRow.id))
        return [_to(LedgerEntry, r) for r in res.scalars()]


class SqlSpotRepo(_Repo):
    async def get(self, spot_id: int, *, for_update: bool = False) -> Optional[Spot]:
        row = await self._one(select(SpotRow).where(SpotRow.id == spot_id), for_update)
        return _to(Spot, row) if row else None

    async def list(self, company_id: int) -> List[Spot]:
        res = await self.session.execute(
            select(SpotRow).where(SpotRow.company_id == company_id).order_by(SpotRow.number)
            .execution_options(populate_existing=True)
        )
        return [_to(Spot, r) for r in res.scalars()]

    async def find_by_vehicle(self, vehicle_id: int) -> Optional[Spot]:
        res = await self.session.execute(
            select(SpotRow).where(SpotRow.vehicle_id == vehicle_id).limit(1)
            .execution_options(populate_existing=True)
        )
        row = res.scalars().first()
        return _to(Spot, row) if row else None

    async def numbers(self, company_id: int) -> List[int]:
        res = await self.session.execute(
            select(SpotRow.number).where(SpotRow.company_id == company_id).order_by(SpotRow.number)
        )
        return list(res.scalars())

    async def add_many(self, company_id: int, numbers: Sequence[int]) -> None:
        self.session.add_all(
            [SpotRow(company_id=company_id, number=n, status=SpotStatus.AVAILABLE.value) for n in numbers]
        )
        await self._flush(f"vagas {list(numbers)} de la empresa {company_id}")

    async def removable(self, company_id: int, limit: int) -> List[Spot]:
        if limit <= 0:
            return []
        stmt = (
            select(SpotRow)
            .where(SpotRow.company_id == company_id, SpotRow.status == SpotStatus.AVAILABLE.value)
            .order_by(SpotRow.number.desc())
            .limit(limit)
            .with_for_update()
        )
        res = await self.session.execute(stmt)
        return [_to(Spot, r) for r in res.scalars()]

    async def delete_many(self, spot_ids: Sequence[int]) -> int:
        if not spot_ids:
            return 0
        res = await self.session.execute(
            delete(SpotRow).where(SpotRow.id.in_(list(spot_ids))).execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def swap_status(self, spot_id: int, expected: Collection[SpotStatus], status: SpotStatus,
                          occupancy: Optional[Occupancy] = None, *, clear: bool = False) -> bool:
        values = {"status": SpotStatus(status).value}
        if occupancy is not None:
            values.update(
                vehicle_id=occupancy.vehicle_id,
                entry_id=occupancy.entry_id,
                entered_at=_utc(occupancy.entered_at),
                estimated_minutes=occupancy.estimated_minutes,
                deadline=_utc(occupancy.deadline),
            )
        elif clear:
            values.update(vehicle_id=None, entry_id=None, entered_at=None, estimated_minutes=None, deadline=None)

        stmt = (
            update(SpotRow)
            .where(SpotRow.id == spot_id, SpotRow.status.in_([SpotStatus(s).value for s in expected]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1


class SqlUnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.session: Optional[AsyncSession] = None
        self._committed = False

    async def __aenter__(self) -> "SqlUnitOfWork":
        self.session = self.session_factory()
        self._committed = False
        self.companies = SqlCompanyRepo(self.session)
        self.admins = SqlAdminRepo(self.session)
        self.vehicles = SqlVehicleRepo(self.session)
        self.rates = SqlRateRepo(self.session)
        self.ledger = SqlLedgerRepo(self.session)
        self.spots = SqlSpotRepo(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None or not self._committed:
                await self.session.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except IntegrityError as e:
            raise DuplicateKey("la transaccion choca con una fila existente", constraint=str(e.orig)) from e
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()
