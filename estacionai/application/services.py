import logging
from datetime import datetime, timedelta
from typing import Collection, List, Optional, Tuple

from estacionai.application.ledger import record_entry
from estacionai.application.ports import Clock, UnitOfWork, UnitOfWorkFactory, system_clock
from estacionai.application.rates import rate_for
from estacionai.domain.access import authorize, scope_company
from estacionai.domain.errors import (
    AmountMismatch, Forbidden, InvalidState, NoOpenEntry, NotFound, ValidationError,
)
from estacionai.domain.fees import FeeBreakdown, calculate_fee
from estacionai.domain.models import (
    ChargeQuote, ExitReceipt, Identity, LedgerKind, Occupancy, PaymentMethod,
    Spot, SpotStatus, SpotView, Vehicle,
)
from estacionai.domain.spots import BLOCKED, OVERRIDE_TARGETS, require_transition

"""
Logica de la vaga sin detalles de red/DB:
1) Autoriza: admin o staff de la empresa duena de la vaga.
2) Lee la vaga con lock (FOR UPDATE) y valida el estado origen.
3) Escribe libro + vaga en la misma transaccion; el cambio de estado es un
   compare-and-swap sobre el estado leido, asi dos occupy concurrentes no
   pueden ganar los dos.
"""

logger = logging.getLogger(__name__)

PAYMENT_TOLERANCE_CENTS = 1


class SpotService:
    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Clock = system_clock,
                 tolerance: int = PAYMENT_TOLERANCE_CENTS):
        self.uow_factory = uow_factory
        self.clock = clock
        self.tolerance = tolerance

    async def _load(self, uow: UnitOfWork, identity: Identity, spot_id: int, for_update: bool = True) -> Spot:
        spot = await uow.spots.get(spot_id, for_update=for_update)
        if spot is None:
            raise NotFound("spot", spot_id)
        authorize(identity, spot.company_id)
        return spot

    async def _swap(self, uow: UnitOfWork, spot: Spot, expected: Collection[SpotStatus], target: SpotStatus,
                    occupancy: Optional[Occupancy] = None, clear: bool = False) -> Spot:
        if not await uow.spots.swap_status(spot.id, expected, target, occupancy, clear=clear):
            raise InvalidState(
                f"la vaga {spot.number} cambio de estado en otra transaccion",
                spot_id=spot.id,
                expected=sorted(s.value for s in expected),
            )
        return await uow.spots.get(spot.id)

    async def _quote(self, uow: UnitOfWork, spot: Spot, now: datetime) -> Tuple[FeeBreakdown, Vehicle]:
        if spot.entered_at is None or spot.vehicle_id is None:
            raise InvalidState(f"la vaga {spot.number} no tiene hora de entrada", spot_id=spot.id, status=spot.status.value)
        vehicle = await uow.vehicles.get(spot.vehicle_id)
        if vehicle is None:
            raise NotFound("vehicle", spot.vehicle_id)
        rate = await rate_for(uow, spot.company_id, vehicle.category)
        return calculate_fee(spot.entered_at, now, rate.hourly_rate, rate.fraction_rate), vehicle

    async def list_spots(self, identity: Identity, company_id: Optional[int] = None) -> List[SpotView]:
        company_id = scope_company(identity, company_id)
        async with self.uow_factory() as uow:
            views = []
            for spot in await uow.spots.list(company_id):
                vehicle = await uow.vehicles.get(spot.vehicle_id) if spot.vehicle_id else None
                views.append(SpotView(
                    spot=spot,
                    plate=vehicle.plate if vehicle else None,
                    model=vehicle.model if vehicle else None,
                    color=vehicle.color if vehicle else None,
                    category=vehicle.category if vehicle else None,
                ))
        return views

    async def occupy_spot(self, identity: Identity, spot_id: int, vehicle_id: int,
                          entry_id: Optional[int] = None, estimated_minutes: Optional[int] = None) -> Spot:
        if estimated_minutes is not None and estimated_minutes <= 0:
            raise ValidationError("estimated_minutes debe ser positivo", estimated_minutes=estimated_minutes)

        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id)
            sources, target = require_transition(spot, "occupy")

            vehicle = await uow.vehicles.get(vehicle_id, for_update=True)
            if vehicle is None:
                raise NotFound("vehicle", vehicle_id)
            if vehicle.company_id != spot.company_id:
                raise Forbidden(
                    f"el vehiculo {vehicle.id} no pertenece a la empresa {spot.company_id}",
                    vehicle_id=vehicle.id,
                    company_id=spot.company_id,
                )
            elsewhere = await uow.spots.find_by_vehicle(vehicle.id)
            if elsewhere is not None:
                raise InvalidState(
                    f"el vehiculo {vehicle.id} ya ocupa la vaga {elsewhere.number}",
                    vehicle_id=vehicle.id,
                    spot_id=elsewhere.id,
                )

            open_entry = await uow.ledger.open_entry(vehicle.id)
            if entry_id is not None:
                entry = await uow.ledger.get(entry_id)
                if entry is None:
                    raise NotFound("ledger entry", entry_id)
                if entry.vehicle_id != vehicle.id or entry.kind != LedgerKind.ENTRY:
                    raise ValidationError(
                        f"el registro {entry_id} no es una entrada del vehiculo {vehicle.id}",
                        entry_id=entry_id,
                        vehicle_id=vehicle.id,
                    )
                if open_entry is None or open_entry.id != entry.id:
                    raise NoOpenEntry(vehicle.id, entry_id)
            else:
                # sin entry explicito: reusar el abierto o registrarlo aca mismo
                entry = open_entry or await record_entry(uow, vehicle, self.clock())

            deadline = None
            if estimated_minutes:
                deadline = entry.recorded_at + timedelta(minutes=estimated_minutes)
            occupancy = Occupancy(
                vehicle_id=vehicle.id,
                entry_id=entry.id,
                entered_at=entry.recorded_at,
                estimated_minutes=estimated_minutes,
                deadline=deadline,
            )
            spot = await self._swap(uow, spot, sources, target, occupancy)
            await uow.commit()

        logger.info("[SPOTS] occupy spot=%s number=%s vehicle=%s entry=%s deadline=%s",
                    spot.id, spot.number, vehicle.id, entry.id, deadline)
        return spot

    async def start_payment(self, identity: Identity, spot_id: int) -> Spot:
        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id)
            sources, target = require_transition(spot, "start_payment")
            spot = await self._swap(uow, spot, sources, target)
            await uow.commit()
        logger.info("[SPOTS] start payment spot=%s number=%s", spot.id, spot.number)
        return spot

    async def calculate_current_charge(self, identity: Identity, spot_id: int) -> ChargeQuote:
        now = self.clock()
        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id, for_update=False)
            fee, _ = await self._quote(uow, spot, now)
        return ChargeQuote(
            spot_id=spot.id,
            total=fee.total,
            elapsed_minutes=fee.elapsed_minutes,
            hours=fee.hours,
            minutes=fee.minutes,
            fractions=fee.fractions,
            exceeded_deadline=spot.deadline is not None and now > spot.deadline,
            deadline=spot.deadline,
            estimated_minutes=spot.estimated_minutes,
        )

    async def finalize_exit(self, identity: Identity, spot_id: int, payment_method: PaymentMethod,
                            charged_amount: int, document_number: Optional[str] = None) -> ExitReceipt:
        method = PaymentMethod(payment_method)
        document_number = (document_number or "").strip() or None
        if method.needs_document and document_number is None:
            raise ValidationError(f"document_number es obligatorio para {method.value}", field="document_number")
        if charged_amount < 0:
            raise ValidationError("el valor cobrado no puede ser negativo", charged_amount=charged_amount)

        now = self.clock()
        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id)
            sources, target = require_transition(spot, "finalize_exit")

            fee, vehicle = await self._quote(uow, spot, now)
            if abs(charged_amount - fee.total) > self.tolerance:
                logger.warning("[SPOTS] amount mismatch spot=%s expected=%s submitted=%s",
                               spot.id, fee.total, charged_amount)
                raise AmountMismatch(fee.total, charged_amount)

            entry = await uow.ledger.open_entry(vehicle.id)
            if entry is None:
                raise NoOpenEntry(vehicle.id, spot.entry_id)

            record = await uow.ledger.append_exit(
                company_id=spot.company_id, vehicle_id=vehicle.id, at=now, entry_id=entry.id,
                charge=charged_amount, elapsed_minutes=fee.elapsed_minutes,
                payment_method=method, document_number=document_number,
            )
            await self._swap(uow, spot, sources, target, clear=True)
            await uow.commit()

        logger.info("[SPOTS] exit spot=%s vehicle=%s charge=%s minutes=%s method=%s",
                    spot.id, vehicle.id, charged_amount, fee.elapsed_minutes, method.value)
        return ExitReceipt(exit_record_id=record.id, charge=charged_amount, elapsed_minutes=fee.elapsed_minutes)

    async def release_spot(self, identity: Identity, spot_id: int) -> Spot:
        """Override administrativo: libera la vaga sin registrar salida en el libro."""
        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id)
            if spot.status in BLOCKED and spot.vehicle_id is not None:
                # bloqueada con ocupante: sale el vehiculo, la vaga sigue bloqueada
                sources, target = frozenset({spot.status}), spot.status
            else:
                sources, target = require_transition(spot, "release")
            vehicle_id = spot.vehicle_id
            spot = await self._swap(uow, spot, sources, target, clear=True)
            await uow.commit()
        logger.info("[SPOTS] release spot=%s number=%s vehicle=%s", spot.id, spot.number, vehicle_id)
        return spot

    async def set_spot_status(self, identity: Identity, spot_id: int, status: SpotStatus) -> Spot:
        try:
            status = SpotStatus(status)
        except ValueError:
            raise ValidationError(f"estado de vaga invalido: {status!r}", field="status")
        if status not in OVERRIDE_TARGETS:
            raise ValidationError(
                f"al estado {status.value} solo se llega con occupy/start_payment",
                field="status",
                allowed=sorted(s.value for s in OVERRIDE_TARGETS),
            )

        async with self.uow_factory() as uow:
            spot = await self._load(uow, identity, spot_id)
            previous = spot.status
            # available exige campos de ocupante en NULL
            spot = await self._swap(uow, spot, {previous}, status, clear=status == SpotStatus.AVAILABLE)
            await uow.commit()
        logger.info("[SPOTS] status spot=%s %s -> %s", spot.id, previous.value, status.value)
        return spot
