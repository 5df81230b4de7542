"""
Shared fixtures for the service tests: a controllable clock and a helper
that seeds a company with spots and rates straight through a unit of work.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from estacionai.application.capacity import reconcile
from estacionai.domain.models import Identity, VehicleCategory

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

ADMIN = Identity(id=1, role="admin")


def staff(company_id: int) -> Identity:
    return Identity(id=company_id, role="company")


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


async def seed_company(uow_factory, *, name: str = "Estacionamento Centro", tax_id: str = "12345678000190",
                       email: Optional[str] = None, spots: int = 5,
                       rates: Optional[Dict[VehicleCategory, Tuple[int, int]]] = None) -> int:
    if rates is None:
        rates = {VehicleCategory.CAR: (1000, 200)}
    async with uow_factory() as uow:
        company = await uow.companies.add(
            name=name, tax_id=tax_id, email=email or f"{tax_id}@example.com",
            password_hash="x", phone=None, address=None,
        )
        await reconcile(uow, company.id, spots)
        for category, (hourly, fraction) in rates.items():
            await uow.rates.upsert(company_id=company.id, category=category,
                                   hourly_rate=hourly, fraction_rate=fraction)
        await uow.commit()
    return company.id


async def add_vehicle(uow_factory, company_id: int, plate: str,
                      category: VehicleCategory = VehicleCategory.CAR) -> int:
    async with uow_factory() as uow:
        vehicle = await uow.vehicles.add(company_id=company_id, plate=plate, category=category,
                                         model=None, color=None)
        await uow.commit()
    return vehicle.id


async def spot_id(uow_factory, company_id: int, number: int) -> int:
    async with uow_factory() as uow:
        return next(s.id for s in await uow.spots.list(company_id) if s.number == number)
