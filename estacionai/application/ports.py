from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Collection, List, Optional, Protocol, Sequence

from estacionai.domain.models import (
    Administrator, Company, Identity, LedgerEntry, Occupancy, PaymentMethod,
    RateConfig, Spot, SpotStatus, Vehicle, VehicleCategory,
)

"""
Puertos de persistencia y credenciales. Los servicios solo ven estos Protocols; las
implementaciones viven en adapters (SQLAlchemy y en memoria).

Una UnitOfWork es una transaccion: todo lo que se hace entre __aenter__ y
commit() se confirma junto o se descarta junto.
"""


class CompanyRepo(Protocol):
    async def get(self, company_id: int, *, for_update: bool = False) -> Optional[Company]: ...
    async def get_by_email(self, email: str) -> Optional[Company]: ...
    async def list(self) -> List[Company]: ...
    async def add(self, *, name: str, tax_id: str, email: str, password_hash: str,
                  phone: Optional[str], address: Optional[str]) -> Company: ...
    async def update(self, company_id: int, **fields) -> Company: ...
    async def delete(self, company_id: int) -> None: ...


class AdminRepo(Protocol):
    async def get_by_email(self, email: str) -> Optional[Administrator]: ...
    async def add(self, *, name: str, email: str, password_hash: str) -> Administrator: ...


class VehicleRepo(Protocol):
    async def get(self, vehicle_id: int, *, for_update: bool = False) -> Optional[Vehicle]: ...
    async def get_by_plate(self, company_id: int, plate: str, *, for_update: bool = False) -> Optional[Vehicle]: ...
    async def list(self, company_id: int) -> List[Vehicle]: ...
    async def add(self, *, company_id: int, plate: str, category: VehicleCategory,
                  model: Optional[str], color: Optional[str]) -> Vehicle: ...
    async def update(self, vehicle_id: int, **fields) -> Vehicle: ...
    async def delete(self, vehicle_id: int) -> None: ...


class RateRepo(Protocol):
    async def get(self, company_id: int, category: VehicleCategory) -> Optional[RateConfig]: ...
    async def list(self, company_id: int) -> List[RateConfig]: ...
    async def upsert(self, *, company_id: int, category: VehicleCategory,
                     hourly_rate: int, fraction_rate: int) -> RateConfig: ...


class LedgerRepo(Protocol):
    async def get(self, entry_id: int) -> Optional[LedgerEntry]: ...
    async def count_for_vehicle(self, vehicle_id: int) -> int: ...
    async def open_entry(self, vehicle_id: int) -> Optional[LedgerEntry]: ...
    async def open_entries(self, company_id: int) -> List[LedgerEntry]: ...
    async def append_entry(self, *, company_id: int, vehicle_id: int, at: datetime) -> LedgerEntry: ...
    async def append_exit(self, *, company_id: int, vehicle_id: int, at: datetime, entry_id: Optional[int],
                          charge: int, elapsed_minutes: int, payment_method: Optional[PaymentMethod],
                          document_number: Optional[str]) -> LedgerEntry: ...
    async def list(self, company_id: int, since: Optional[datetime] = None,
                   until: Optional[datetime] = None) -> List[LedgerEntry]: ...


class SpotRepo(Protocol):
    async def get(self, spot_id: int, *, for_update: bool = False) -> Optional[Spot]: ...
    async def list(self, company_id: int) -> List[Spot]: ...
    async def find_by_vehicle(self, vehicle_id: int) -> Optional[Spot]: ...
    async def numbers(self, company_id: int) -> List[int]: ...
    async def add_many(self, company_id: int, numbers: Sequence[int]) -> None: ...
    async def removable(self, company_id: int, limit: int) -> List[Spot]: ...
    async def delete_many(self, spot_ids: Sequence[int]) -> int: ...
    async def swap_status(self, spot_id: int, expected: Collection[SpotStatus], status: SpotStatus,
                          occupancy: Optional[Occupancy] = None, *, clear: bool = False) -> bool:
        """
        Compare-and-swap: cambia el estado solo si el actual esta en `expected`.
        `occupancy` llena los campos del ocupante, `clear` los pone en NULL;
        sin ninguno quedan como estan. Devuelve False si no se actualizo nada.
        """
        ...


class UnitOfWork(Protocol):
    companies: CompanyRepo
    admins: AdminRepo
    vehicles: VehicleRepo
    rates: RateRepo
    ledger: LedgerRepo
    spots: SpotRepo

    async def __aenter__(self) -> "UnitOfWork": ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...
    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


class Credentials(Protocol):
    """Hash de claves y emision de tokens bearer (implementado en adapters.auth)."""
    def hash_password(self, password: str) -> str: ...
    def verify_password(self, password_hash: str, password: str) -> bool: ...
    def issue_token(self, identity: Identity) -> str: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)
