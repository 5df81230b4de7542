#!/usr/bin/env python3
"""
Spot state machine tests against the in-memory unit of work.
"""

import asyncio
import unittest
from unittest import mock

from estacionai.adapters.repo_memory import InMemorySpotRepo, InMemoryStore
from estacionai.application.ledger import LedgerService
from estacionai.application.services import SpotService
from estacionai.domain.errors import (
    AmountMismatch, Forbidden, InvalidState, NoOpenEntry, NotFound, RateNotConfigured, ValidationError,
)
from estacionai.domain.models import LedgerKind, PaymentMethod, SpotStatus, VehicleCategory
from tests.support import ADMIN, FixedClock, add_vehicle, seed_company, spot_id, staff


class SpotServiceTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = InMemoryStore()
        self.uow = self.store.unit_of_work
        self.clock = FixedClock()
        self.company_id = await seed_company(self.uow, spots=5)
        self.user = staff(self.company_id)
        self.spots = SpotService(self.uow, clock=self.clock)
        self.ledger = LedgerService(self.uow, clock=self.clock)
        self.spot1 = await spot_id(self.uow, self.company_id, 1)
        self.spot2 = await spot_id(self.uow, self.company_id, 2)
        self.car = await add_vehicle(self.uow, self.company_id, "ABC1234")

    async def open_entry(self, vehicle_id):
        async with self.uow() as uow:
            return await uow.ledger.open_entry(vehicle_id)

    async def park_and_pay(self, minutes):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        self.clock.advance(minutes=minutes)
        return await self.spots.start_payment(self.user, self.spot1)


class TestOccupy(SpotServiceTestCase):
    """Unit tests for SpotService.occupy_spot"""

    async def test_occupy_available_spot(self):
        spot = await self.spots.occupy_spot(self.user, self.spot1, self.car)

        self.assertEqual(spot.status, SpotStatus.OCCUPIED)
        self.assertEqual(spot.vehicle_id, self.car)
        self.assertEqual(spot.entered_at, self.clock.now)
        entry = await self.open_entry(self.car)
        self.assertIsNotNone(entry)
        self.assertEqual(spot.entry_id, entry.id)

    async def test_occupy_reuses_open_entry(self):
        receipt = await self.ledger.register_entry(self.user, None, "XYZ9876", VehicleCategory.CAR)
        entered = self.clock.now
        self.clock.advance(minutes=7)

        spot = await self.spots.occupy_spot(self.user, self.spot1, receipt.vehicle_id)

        self.assertEqual(spot.entry_id, receipt.entry_id)
        self.assertEqual(spot.entered_at, entered)

    async def test_occupy_with_estimate_sets_deadline(self):
        spot = await self.spots.occupy_spot(self.user, self.spot1, self.car, estimated_minutes=30)
        self.assertEqual(spot.estimated_minutes, 30)
        self.assertEqual((spot.deadline - spot.entered_at).total_seconds(), 30 * 60)

    async def test_occupy_rejects_non_positive_estimate(self):
        with self.assertRaises(ValidationError):
            await self.spots.occupy_spot(self.user, self.spot1, self.car, estimated_minutes=0)

    async def test_occupied_spot_cannot_be_occupied_again(self):
        other = await add_vehicle(self.uow, self.company_id, "DEF5678")
        await self.spots.occupy_spot(self.user, self.spot1, self.car)

        with self.assertRaises(InvalidState):
            await self.spots.occupy_spot(self.user, self.spot1, other)

        self.assertIsNone(await self.open_entry(other))

    async def test_vehicle_cannot_sit_on_two_spots(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        with self.assertRaises(InvalidState):
            await self.spots.occupy_spot(self.user, self.spot2, self.car)

    async def test_spot_under_maintenance_rejects_occupy(self):
        await self.spots.set_spot_status(self.user, self.spot1, SpotStatus.MAINTENANCE)
        with self.assertRaises(InvalidState):
            await self.spots.occupy_spot(self.user, self.spot1, self.car)

    async def test_explicit_entry_must_be_open_and_match(self):
        other = await add_vehicle(self.uow, self.company_id, "DEF5678")
        receipt = await self.ledger.register_entry(self.user, None, "DEF5678")

        with self.assertRaises(ValidationError):
            await self.spots.occupy_spot(self.user, self.spot1, self.car, entry_id=receipt.entry_id)

        await self.ledger.register_exit(self.user, other, 0)
        with self.assertRaises(NoOpenEntry):
            await self.spots.occupy_spot(self.user, self.spot1, other, entry_id=receipt.entry_id)

    async def test_unknown_spot_and_vehicle(self):
        with self.assertRaises(NotFound):
            await self.spots.occupy_spot(self.user, 999, self.car)
        with self.assertRaises(NotFound):
            await self.spots.occupy_spot(self.user, self.spot1, 999)

    async def test_other_company_is_forbidden(self):
        rival = await seed_company(self.uow, tax_id="98765432000110", spots=1)
        rival_car = await add_vehicle(self.uow, rival, "RIV0001")

        with self.assertRaises(Forbidden):
            await self.spots.occupy_spot(staff(rival), self.spot1, rival_car)
        with self.assertRaises(Forbidden):
            await self.spots.occupy_spot(self.user, self.spot1, rival_car)
        with self.assertRaises(Forbidden):
            await self.spots.occupy_spot(ADMIN, self.spot1, rival_car)

    async def test_concurrent_occupy_has_one_winner(self):
        other = await add_vehicle(self.uow, self.company_id, "DEF5678")

        results = await asyncio.gather(
            self.spots.occupy_spot(self.user, self.spot1, self.car),
            self.spots.occupy_spot(self.user, self.spot1, other),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 1)
        self.assertIsInstance(losers[0], InvalidState)
        async with self.uow() as uow:
            spot = await uow.spots.get(self.spot1)
            parked = await uow.ledger.open_entries(self.company_id)
        self.assertEqual(spot.vehicle_id, winners[0].vehicle_id)
        self.assertEqual([e.vehicle_id for e in parked], [winners[0].vehicle_id])

    async def test_lost_swap_rolls_back_entry(self):
        # otra transaccion cambio la vaga entre la lectura y el UPDATE
        with mock.patch.object(InMemorySpotRepo, "swap_status", mock.AsyncMock(return_value=False)):
            with self.assertRaises(InvalidState) as ctx:
                await self.spots.occupy_spot(self.user, self.spot1, self.car)

        self.assertEqual(ctx.exception.detail["spot_id"], self.spot1)
        self.assertEqual(ctx.exception.detail["expected"], ["available"])
        async with self.uow() as uow:
            spot = await uow.spots.get(self.spot1)
        self.assertEqual(spot.status, SpotStatus.AVAILABLE)
        self.assertTrue(spot.is_clear)
        self.assertIsNone(await self.open_entry(self.car))


class TestPayment(SpotServiceTestCase):
    """Unit tests for start_payment / calculate_current_charge / finalize_exit"""

    async def test_start_payment_needs_occupied_spot(self):
        with self.assertRaises(InvalidState):
            await self.spots.start_payment(self.user, self.spot1)

    async def test_charge_quote(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car, estimated_minutes=60)
        self.clock.advance(minutes=90)

        quote = await self.spots.calculate_current_charge(self.user, self.spot1)

        self.assertEqual((quote.hours, quote.minutes, quote.fractions), (1, 30, 2))
        self.assertEqual(quote.total, 1400)
        self.assertTrue(quote.exceeded_deadline)

    async def test_charge_within_deadline(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car, estimated_minutes=60)
        self.clock.advance(minutes=10)
        quote = await self.spots.calculate_current_charge(self.user, self.spot1)
        self.assertFalse(quote.exceeded_deadline)
        self.assertEqual(quote.total, 200)

    async def test_charge_on_free_spot(self):
        with self.assertRaises(InvalidState):
            await self.spots.calculate_current_charge(self.user, self.spot1)

    async def test_missing_rate(self):
        truck = await add_vehicle(self.uow, self.company_id, "TRK0001", VehicleCategory.TRUCK)
        await self.spots.occupy_spot(self.user, self.spot1, truck)
        with self.assertRaises(RateNotConfigured):
            await self.spots.calculate_current_charge(self.user, self.spot1)

    async def test_mismatch_keeps_spot_paying(self):
        await self.park_and_pay(40)

        with self.assertRaises(AmountMismatch) as ctx:
            await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CASH, 200)

        self.assertEqual(ctx.exception.expected_cents, 600)
        self.assertEqual(ctx.exception.detail["expected"], "6.00")
        self.assertEqual(ctx.exception.detail["submitted"], "2.00")
        async with self.uow() as uow:
            spot = await uow.spots.get(self.spot1)
            records = await uow.ledger.list(self.company_id)
        self.assertEqual(spot.status, SpotStatus.PAYING)
        self.assertEqual(spot.vehicle_id, self.car)
        self.assertEqual([r.kind for r in records], [LedgerKind.ENTRY])

    async def test_finalize_exit(self):
        await self.park_and_pay(40)

        receipt = await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.PIX, 600)

        self.assertEqual((receipt.charge, receipt.elapsed_minutes), (600, 40))
        async with self.uow() as uow:
            spot = await uow.spots.get(self.spot1)
            exit_record = await uow.ledger.get(receipt.exit_record_id)
        self.assertEqual(spot.status, SpotStatus.AVAILABLE)
        self.assertTrue(spot.is_clear)
        self.assertEqual(exit_record.kind, LedgerKind.EXIT)
        self.assertEqual(exit_record.charge, 600)
        self.assertEqual(exit_record.payment_method, PaymentMethod.PIX)
        self.assertIsNone(await self.open_entry(self.car))

    async def test_tolerance_of_one_cent(self):
        await self.park_and_pay(40)
        with self.assertRaises(AmountMismatch):
            await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CASH, 602)
        receipt = await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CASH, 601)
        self.assertEqual(receipt.charge, 601)

    async def test_card_needs_document(self):
        await self.park_and_pay(5)
        with self.assertRaises(ValidationError):
            await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CREDIT_CARD, 200)
        receipt = await self.spots.finalize_exit(
            self.user, self.spot1, PaymentMethod.DEBIT_CARD, 200, document_number=" 12345678900 ")
        async with self.uow() as uow:
            record = await uow.ledger.get(receipt.exit_record_id)
        self.assertEqual(record.document_number, "12345678900")

    async def test_finalize_requires_paying(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        with self.assertRaises(InvalidState):
            await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CASH, 200)

    async def test_vehicle_can_park_again_after_exit(self):
        await self.park_and_pay(20)
        await self.spots.finalize_exit(self.user, self.spot1, PaymentMethod.CASH, 400)
        self.clock.advance(minutes=1)

        spot = await self.spots.occupy_spot(self.user, self.spot2, self.car)
        self.assertEqual(spot.status, SpotStatus.OCCUPIED)


class TestOverrides(SpotServiceTestCase):
    """Unit tests for release_spot / set_spot_status / list_spots"""

    async def test_release_clears_spot_and_keeps_entry(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)

        spot = await self.spots.release_spot(self.user, self.spot1)

        self.assertEqual(spot.status, SpotStatus.AVAILABLE)
        self.assertTrue(spot.is_clear)
        self.assertIsNotNone(await self.open_entry(self.car))

    async def test_release_free_spot(self):
        with self.assertRaises(InvalidState):
            await self.spots.release_spot(self.user, self.spot1)

    async def test_release_blocked_spot_with_occupant(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        await self.spots.set_spot_status(self.user, self.spot1, SpotStatus.MAINTENANCE)

        spot = await self.spots.release_spot(self.user, self.spot1)

        self.assertEqual(spot.status, SpotStatus.MAINTENANCE)
        self.assertTrue(spot.is_clear)
        self.clock.advance(minutes=15)
        receipt = await self.ledger.register_exit(self.user, self.car, 300)
        self.assertEqual(receipt.elapsed_minutes, 15)
        self.assertIsNone(await self.open_entry(self.car))
        with self.assertRaises(InvalidState):
            await self.spots.release_spot(self.user, self.spot1)

    async def test_blocked_spot_with_occupant_rejects_register_exit(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        await self.spots.set_spot_status(self.user, self.spot1, SpotStatus.UNAVAILABLE)

        with self.assertRaises(InvalidState):
            await self.ledger.register_exit(self.user, self.car, 0)
        spot = await self.spots.release_spot(self.user, self.spot1)
        self.assertEqual(spot.status, SpotStatus.UNAVAILABLE)

    async def test_set_status(self):
        spot = await self.spots.set_spot_status(self.user, self.spot1, SpotStatus.UNAVAILABLE)
        self.assertEqual(spot.status, SpotStatus.UNAVAILABLE)
        spot = await self.spots.set_spot_status(self.user, self.spot1, "available")
        self.assertEqual(spot.status, SpotStatus.AVAILABLE)

    async def test_set_status_rejects_flow_states(self):
        for status in (SpotStatus.OCCUPIED, SpotStatus.PAYING, "parked"):
            with self.subTest(status=status):
                with self.assertRaises(ValidationError):
                    await self.spots.set_spot_status(self.user, self.spot1, status)

    async def test_set_available_clears_occupant(self):
        await self.spots.occupy_spot(self.user, self.spot1, self.car)
        spot = await self.spots.set_spot_status(self.user, self.spot1, SpotStatus.AVAILABLE)
        self.assertTrue(spot.is_clear)

    async def test_list_spots(self):
        await self.spots.occupy_spot(self.user, self.spot2, self.car)

        views = await self.spots.list_spots(self.user)

        self.assertEqual([v.spot.number for v in views], [1, 2, 3, 4, 5])
        self.assertEqual(views[1].plate, "ABC1234")
        self.assertIsNone(views[0].plate)
        with self.assertRaises(ValidationError):
            await self.spots.list_spots(ADMIN)
        self.assertEqual(len(await self.spots.list_spots(ADMIN, self.company_id)), 5)


if __name__ == "__main__":
    unittest.main()
