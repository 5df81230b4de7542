import asyncio
import copy
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Collection, Dict, List, Optional, Sequence

from estacionai.domain.errors import DuplicateKey, NotFound
from estacionai.domain.models import (
    Administrator, Company, LedgerEntry, LedgerKind, Occupancy, PaymentMethod,
    RateConfig, Spot, SpotStatus, Vehicle, VehicleCategory,
)

"""
Implementacion en memoria de los puertos (tests y desarrollo local).

Las unidades de trabajo se serializan con un asyncio.Lock y cada una guarda
un snapshot de las tablas al entrar: rollback (o salir sin commit) lo
restaura. Aplica las mismas restricciones unique que el esquema SQL.
"""

TABLES = ("companies", "admins", "vehicles", "rates", "ledger", "spots")


class InMemoryStore:
    def __init__(self):
        self.tables: Dict[str, Dict[int, object]] = {t: {} for t in TABLES}
        self._seq = defaultdict(int)
        self.lock = asyncio.Lock()

    def next_id(self, table: str) -> int:
        self._seq[table] += 1
        return self._seq[table]

    def snapshot(self) -> Dict[str, Dict[int, object]]:
        return copy.deepcopy(self.tables)

    def restore(self, snapshot: Dict[str, Dict[int, object]]) -> None:
        self.tables = copy.deepcopy(snapshot)

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class _Repo:
    table = ""

    def __init__(self, store: InMemoryStore):
        self.store = store

    @property
    def rows(self) -> Dict[int, object]:
        return self.store.tables[self.table]

    def _insert(self, model_cls, **data):
        row = model_cls(id=self.store.next_id(self.table), **data)
        self.rows[row.id] = row
        return row.model_copy(deep=True)

    def _update(self, ident: int, kind: str, **fields):
        row = self.rows.get(ident)
        if row is None:
            raise NotFound(kind, ident)
        fields = {k: v.value if isinstance(v, Enum) else v for k, v in fields.items()}
        updated = row.model_validate({**row.model_dump(), **fields})
        self.rows[ident] = updated
        return updated.model_copy(deep=True)

    def _get(self, ident: Optional[int]):
        row = self.rows.get(ident)
        return row.model_copy(deep=True) if row is not None else None


class InMemoryCompanyRepo(_Repo):
    table = "companies"

    async def get(self, company_id: int, *, for_update: bool = False) -> Optional[Company]:
        return self._get(company_id)

    async def get_by_email(self, email: str) -> Optional[Company]:
        return next((c.model_copy() for c in self.rows.values() if c.email == email), None)

    async def list(self) -> List[Company]:
        return [c.model_copy() for _, c in sorted(self.rows.items())]

    async def add(self, *, name, tax_id, email, password_hash, phone, address) -> Company:
        for c in self.rows.values():
            if c.email == email or c.tax_id == tax_id:
                raise DuplicateKey(f"empresa {email}/{tax_id} choca con una fila existente",
                                   constraint="companies_email_or_tax_id")
        return self._insert(Company, name=name, tax_id=tax_id, email=email, password_hash=password_hash,
                            phone=phone, address=address, total_spots=0, created_at=datetime.now(timezone.utc))

    async def update(self, company_id: int, **fields) -> Company:
        return self._update(company_id, "company", **fields)

    async def delete(self, company_id: int) -> None:
        for table in ("spots", "ledger", "rates", "vehicles"):
            rows = self.store.tables[table]
            for ident in [i for i, r in rows.items() if r.company_id == company_id]:
                del rows[ident]
        self.rows.pop(company_id, None)


class InMemoryAdminRepo(_Repo):
    table = "admins"

    async def get_by_email(self, email: str) -> Optional[Administrator]:
        return next((a.model_copy() for a in self.rows.values() if a.email == email), None)

    async def add(self, *, name: str, email: str, password_hash: str) -> Administrator:
        if any(a.email == email for a in self.rows.values()):
            raise DuplicateKey(f"administrador {email} choca con una fila existente", constraint="administrators_email")
        return self._insert(Administrator, name=name, email=email, password_hash=password_hash)


class InMemoryVehicleRepo(_Repo):
    table = "vehicles"

    async def get(self, vehicle_id: int, *, for_update: bool = False) -> Optional[Vehicle]:
        return self._get(vehicle_id)

    async def get_by_plate(self, company_id: int, plate: str, *, for_update: bool = False) -> Optional[Vehicle]:
        return next((v.model_copy() for v in self.rows.values()
                     if v.company_id == company_id and v.plate == plate), None)

    async def list(self, company_id: int) -> List[Vehicle]:
        return sorted((v.model_copy() for v in self.rows.values() if v.company_id == company_id),
                      key=lambda v: v.plate)

    async def add(self, *, company_id: int, plate: str, category: VehicleCategory,
                  model: Optional[str], color: Optional[str]) -> Vehicle:
        if await self.get_by_plate(company_id, plate) is not None:
            raise DuplicateKey(f"vehiculo {plate} choca con una fila existente", constraint="uq_vehicles_company_plate")
        return self._insert(Vehicle, company_id=company_id, plate=plate, category=VehicleCategory(category),
                            model=model, color=color)

    async def update(self, vehicle_id: int, **fields) -> Vehicle:
        return self._update(vehicle_id, "vehicle", **fields)

    async def delete(self, vehicle_id: int) -> None:
        self.rows.pop(vehicle_id, None)


class InMemoryRateRepo(_Repo):
    table = "rates"

    async def get(self, company_id: int, category: VehicleCategory) -> Optional[RateConfig]:
        category = VehicleCategory(category)
        return next((r.model_copy() for r in self.rows.values()
                     if r.company_id == company_id and r.category == category), None)

    async def list(self, company_id: int) -> List[RateConfig]:
        return sorted((r.model_copy() for r in self.rows.values() if r.company_id == company_id),
                      key=lambda r: r.category.value)

    async def upsert(self, *, company_id: int, category: VehicleCategory,
                     hourly_rate: int, fraction_rate: int) -> RateConfig:
        current = await self.get(company_id, category)
        if current is not None:
            return self._update(current.id, "rate", hourly_rate=hourly_rate, fraction_rate=fraction_rate)
        return self._insert(RateConfig, company_id=company_id, category=VehicleCategory(category),
                            hourly_rate=hourly_rate, fraction_rate=fraction_rate)


class InMemoryLedgerRepo(_Repo):
    table = "ledger"

    def _is_open(self, entry: LedgerEntry) -> bool:
        return not any(
            r.kind == LedgerKind.EXIT and r.vehicle_id == entry.vehicle_id
            and (r.recorded_at > entry.recorded_at or r.entry_id == entry.id)
            for r in self.rows.values()
        )

    def _open(self) -> List[LedgerEntry]:
        entries = [r for r in self.rows.values() if r.kind == LedgerKind.ENTRY and self._is_open(r)]
        return sorted(entries, key=lambda r: (r.recorded_at, r.id), reverse=True)

    async def get(self, entry_id: int) -> Optional[LedgerEntry]:
        return self._get(entry_id)

    async def count_for_vehicle(self, vehicle_id: int) -> int:
        return sum(1 for r in self.rows.values() if r.vehicle_id == vehicle_id)

    async def open_entry(self, vehicle_id: int) -> Optional[LedgerEntry]:
        return next((r.model_copy() for r in self._open() if r.vehicle_id == vehicle_id), None)

    async def open_entries(self, company_id: int) -> List[LedgerEntry]:
        return [r.model_copy() for r in self._open() if r.company_id == company_id]

    async def append_entry(self, *, company_id: int, vehicle_id: int, at: datetime) -> LedgerEntry:
        return self._insert(LedgerEntry, company_id=company_id, vehicle_id=vehicle_id,
                            kind=LedgerKind.ENTRY, recorded_at=at)

    async def append_exit(self, *, company_id: int, vehicle_id: int, at: datetime, entry_id: Optional[int],
                          charge: int, elapsed_minutes: int, payment_method: Optional[PaymentMethod],
                          document_number: Optional[str]) -> LedgerEntry:
        return self._insert(LedgerEntry, company_id=company_id, vehicle_id=vehicle_id, kind=LedgerKind.EXIT,
                            recorded_at=at, entry_id=entry_id, charge=charge, elapsed_minutes=elapsed_minutes,
                            payment_method=payment_method, document_number=document_number)

    async def list(self, company_id: int, since: Optional[datetime] = None,
                   until: Optional[datetime] = None) -> List[LedgerEntry]:
        rows = [
            r for r in self.rows.values()
            if r.company_id == company_id
            and (since is None or r.recorded_at >= since)
            and (until is None or r.recorded_at <= until)
        ]
        return [r.model_copy() for r in sorted(rows, key=lambda r: (r.recorded_at, r.id))]


class InMemorySpotRepo(_Repo):
    table = "spots"

    async def get(self, spot_id: int, *, for_update: bool = False) -> Optional[Spot]:
        return self._get(spot_id)

    async def list(self, company_id: int) -> List[Spot]:
        return sorted((s.model_copy() for s in self.rows.values() if s.company_id == company_id),
                      key=lambda s: s.number)

    async def find_by_vehicle(self, vehicle_id: int) -> Optional[Spot]:
        return next((s.model_copy() for s in self.rows.values() if s.vehicle_id == vehicle_id), None)

    async def numbers(self, company_id: int) -> List[int]:
        return [s.number for s in await self.list(company_id)]

    async def add_many(self, company_id: int, numbers: Sequence[int]) -> None:
        taken = set(await self.numbers(company_id))
        clash = taken.intersection(numbers)
        if clash or len(set(numbers)) != len(numbers):
            raise DuplicateKey(f"las vagas {sorted(clash)} de la empresa {company_id} ya existen",
                               constraint="uq_spots_company_number")
        for n in numbers:
            self._insert(Spot, company_id=company_id, number=n, status=SpotStatus.AVAILABLE)

    async def removable(self, company_id: int, limit: int) -> List[Spot]:
        if limit <= 0:
            return []
        free = [s for s in await self.list(company_id) if s.status == SpotStatus.AVAILABLE]
        return sorted(free, key=lambda s: s.number, reverse=True)[:limit]

    async def delete_many(self, spot_ids: Sequence[int]) -> int:
        removed = 0
        for ident in spot_ids:
            if self.rows.pop(ident, None) is not None:
                removed += 1
        return removed

    async def swap_status(self, spot_id: int, expected: Collection[SpotStatus], status: SpotStatus,
                          occupancy: Optional[Occupancy] = None, *, clear: bool = False) -> bool:
        spot = self.rows.get(spot_id)
        if spot is None or spot.status not in {SpotStatus(s) for s in expected}:
            return False
        fields = {"status": SpotStatus(status)}
        if occupancy is not None:
            fields.update(occupancy.model_dump())
        elif clear:
            fields.update(vehicle_id=None, entry_id=None, entered_at=None, estimated_minutes=None, deadline=None)
        self.rows[spot_id] = spot.model_copy(update=fields)
        return True


class InMemoryUnitOfWork:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self._snapshot = None
        self._committed = False

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        await self.store.lock.acquire()
        self._snapshot = self.store.snapshot()
        self._committed = False
        self.companies = InMemoryCompanyRepo(self.store)
        self.admins = InMemoryAdminRepo(self.store)
        self.vehicles = InMemoryVehicleRepo(self.store)
        self.rates = InMemoryRateRepo(self.store)
        self.ledger = InMemoryLedgerRepo(self.store)
        self.spots = InMemorySpotRepo(self.store)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None or not self._committed:
                self.store.restore(self._snapshot)
        finally:
            self.store.lock.release()

    async def commit(self) -> None:
        self._snapshot = self.store.snapshot()
        self._committed = True

    async def rollback(self) -> None:
        self.store.restore(self._snapshot)
