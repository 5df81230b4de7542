import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from estacionai.application.ports import Clock, UnitOfWork, UnitOfWorkFactory, system_clock
from estacionai.domain.access import authorize, scope_company
from estacionai.domain.errors import (
    AlreadyParked, InvalidState, NoOpenEntry, NotFound, ValidationError,
)
from estacionai.domain.fees import elapsed_minutes
from estacionai.domain.models import (
    EntryReceipt, ExitReceipt, Identity, LedgerEntry, LedgerKind, ParkedVehicle,
    ReportLine, Vehicle, VehicleCategory,
)

"""
Libro de entradas/salidas (append-only).

Un vehiculo esta estacionado si tiene un `entry` sin `exit` posterior; no hay
un booleano guardado, se consulta siempre el libro. Como mucho un entry
abierto por vehiculo: se bloquea la fila del vehiculo antes de chequear.
"""

logger = logging.getLogger(__name__)

PLATE_RE = re.compile(r"^[A-Z0-9-]{2,10}$")


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def normalize_plate(p: str) -> str:
    return "".join(p.split()).upper() if p else ""


def validate_plate(plate: str) -> str:
    norm = normalize_plate(plate)
    if not PLATE_RE.match(norm):
        raise ValidationError(f"placa invalida: {plate!r}", field="plate")
    return norm


async def record_entry(uow: UnitOfWork, vehicle: Vehicle, at: datetime) -> LedgerEntry:
    """Agrega un entry si el vehiculo no tiene uno abierto. Llamar con la fila del vehiculo bloqueada."""
    current = await uow.ledger.open_entry(vehicle.id)
    if current is not None:
        raise AlreadyParked(vehicle.id, current.id)
    return await uow.ledger.append_entry(company_id=vehicle.company_id, vehicle_id=vehicle.id, at=at)


class LedgerService:
    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Clock = system_clock):
        self.uow_factory = uow_factory
        self.clock = clock

    async def register_entry(self, identity: Identity, company_id: Optional[int], plate: str,
                             category: Optional[VehicleCategory] = None, model: Optional[str] = None,
                             color: Optional[str] = None) -> EntryReceipt:
        company_id = scope_company(identity, company_id)
        plate = validate_plate(plate)

        async with self.uow_factory() as uow:
            if await uow.companies.get(company_id) is None:
                raise NotFound("company", company_id)

            created = False
            vehicle = await uow.vehicles.get_by_plate(company_id, plate, for_update=True)
            if vehicle is None:
                if category is None:
                    raise ValidationError(
                        f"el vehiculo {plate} no esta registrado, category es obligatoria", field="category"
                    )
                vehicle = await uow.vehicles.add(
                    company_id=company_id, plate=plate, category=VehicleCategory(category),
                    model=model, color=color,
                )
                created = True
            else:
                changes = {k: v for k, v in (("category", category), ("model", model), ("color", color))
                           if v is not None}
                if changes:
                    vehicle = await uow.vehicles.update(vehicle.id, **changes)

            entry = await record_entry(uow, vehicle, self.clock())
            await uow.commit()

        logger.info("[LEDGER] entry vehicle=%s plate=%s entry=%s company=%s%s",
                    vehicle.id, plate, entry.id, company_id, " (new vehicle)" if created else "")
        return EntryReceipt(vehicle_id=vehicle.id, entry_id=entry.id,
                            recorded_at=entry.recorded_at, created_vehicle=created)

    async def register_exit(self, identity: Identity, vehicle_id: int, charged_amount: int) -> ExitReceipt:
        """Salida sin vaga asignada. Si el vehiculo ocupa una vaga hay que usar finalize_exit."""
        if charged_amount < 0:
            raise ValidationError("el valor cobrado no puede ser negativo", charged_amount=charged_amount)

        async with self.uow_factory() as uow:
            vehicle = await uow.vehicles.get(vehicle_id, for_update=True)
            if vehicle is None:
                raise NotFound("vehicle", vehicle_id)
            authorize(identity, vehicle.company_id)

            spot = await uow.spots.find_by_vehicle(vehicle.id)
            if spot is not None:
                raise InvalidState(
                    f"el vehiculo {vehicle.id} ocupa la vaga {spot.number}, la salida se cierra en la vaga",
                    vehicle_id=vehicle.id,
                    spot_id=spot.id,
                )

            entry = await uow.ledger.open_entry(vehicle.id)
            if entry is None:
                raise NoOpenEntry(vehicle.id)

            now = self.clock()
            minutes = elapsed_minutes(entry.recorded_at, now)
            record = await uow.ledger.append_exit(
                company_id=vehicle.company_id, vehicle_id=vehicle.id, at=now, entry_id=entry.id,
                charge=charged_amount, elapsed_minutes=minutes, payment_method=None, document_number=None,
            )
            await uow.commit()

        logger.info("[LEDGER] exit vehicle=%s entry=%s charge=%s minutes=%s",
                    vehicle.id, entry.id, charged_amount, minutes)
        return ExitReceipt(exit_record_id=record.id, charge=charged_amount, elapsed_minutes=minutes)

    async def list_parked(self, identity: Identity, company_id: Optional[int] = None) -> List[ParkedVehicle]:
        company_id = scope_company(identity, company_id)
        now = self.clock()
        async with self.uow_factory() as uow:
            parked = []
            for entry in await uow.ledger.open_entries(company_id):
                vehicle = await uow.vehicles.get(entry.vehicle_id)
                parked.append(ParkedVehicle(
                    vehicle=vehicle,
                    entry_id=entry.id,
                    entered_at=entry.recorded_at,
                    parked_seconds=max(0, int((now - entry.recorded_at).total_seconds())),
                ))
        return parked

    async def list_records(self, identity: Identity, company_id: Optional[int] = None,
                           since: Optional[datetime] = None, until: Optional[datetime] = None) -> List[LedgerEntry]:
        company_id = scope_company(identity, company_id)
        async with self.uow_factory() as uow:
            return await uow.ledger.list(company_id, as_utc(since), as_utc(until))

    async def report(self, identity: Identity, company_id: Optional[int], since: datetime,
                     until: datetime) -> List[ReportLine]:
        if as_utc(since) > as_utc(until):
            raise ValidationError("since no puede ser posterior a until", since=since.isoformat(), until=until.isoformat())
        records = await self.list_records(identity, company_id, since, until)
        lines = []
        for kind in LedgerKind:
            of_kind = [r for r in records if r.kind == kind]
            lines.append(ReportLine(kind=kind, count=len(of_kind), revenue=sum(r.charge or 0 for r in of_kind)))
        return lines
