#!/usr/bin/env python3
"""
Entry/exit ledger tests.
"""

import unittest
from datetime import timedelta

from estacionai.adapters.repo_memory import InMemoryStore
from estacionai.application.ledger import LedgerService, normalize_plate, validate_plate
from estacionai.application.services import SpotService
from estacionai.domain.errors import (
    AlreadyParked, Forbidden, InvalidState, NoOpenEntry, NotFound, ValidationError,
)
from estacionai.domain.models import LedgerKind, PaymentMethod, VehicleCategory
from tests.support import ADMIN, FixedClock, seed_company, spot_id, staff


class TestPlates(unittest.TestCase):
    """Unit tests for plate normalization"""

    def test_normalize(self):
        self.assertEqual(normalize_plate(" abc 1d23 "), "ABC1D23")
        self.assertEqual(normalize_plate(""), "")

    def test_validate(self):
        self.assertEqual(validate_plate("abc-1234"), "ABC-1234")
        for bad in ("", "A", "ABC#123", "ABCDEFGHIJK"):
            with self.subTest(plate=bad):
                with self.assertRaises(ValidationError):
                    validate_plate(bad)


class TestLedgerService(unittest.IsolatedAsyncioTestCase):
    """Unit tests for LedgerService"""

    async def asyncSetUp(self):
        self.store = InMemoryStore()
        self.uow = self.store.unit_of_work
        self.clock = FixedClock()
        self.company_id = await seed_company(self.uow, spots=3)
        self.user = staff(self.company_id)
        self.ledger = LedgerService(self.uow, clock=self.clock)

    async def test_entry_creates_vehicle(self):
        receipt = await self.ledger.register_entry(self.user, None, "abc 1234", VehicleCategory.CAR,
                                                   model="Onix", color="prata")

        self.assertTrue(receipt.created_vehicle)
        self.assertEqual(receipt.recorded_at, self.clock.now)
        async with self.uow() as uow:
            vehicle = await uow.vehicles.get(receipt.vehicle_id)
            entry = await uow.ledger.open_entry(receipt.vehicle_id)
        self.assertEqual(vehicle.plate, "ABC1234")
        self.assertEqual((vehicle.model, vehicle.color), ("Onix", "prata"))
        self.assertEqual(entry.id, receipt.entry_id)

    async def test_entry_requires_category_for_new_vehicle(self):
        with self.assertRaises(ValidationError):
            await self.ledger.register_entry(self.user, None, "ABC1234")

    async def test_second_entry_is_rejected(self):
        first = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        self.clock.advance(minutes=3)

        with self.assertRaises(AlreadyParked) as ctx:
            await self.ledger.register_entry(self.user, None, "ABC1234")

        self.assertEqual(ctx.exception.detail["entry_id"], first.entry_id)
        async with self.uow() as uow:
            self.assertEqual(len(await uow.ledger.list(self.company_id)), 1)

    async def test_existing_vehicle_fields_are_updated(self):
        first = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        await self.ledger.register_exit(self.user, first.vehicle_id, 0)
        self.clock.advance(minutes=1)

        second = await self.ledger.register_entry(self.user, None, "ABC1234", color="azul")

        self.assertFalse(second.created_vehicle)
        self.assertEqual(second.vehicle_id, first.vehicle_id)
        async with self.uow() as uow:
            vehicle = await uow.vehicles.get(first.vehicle_id)
        self.assertEqual(vehicle.color, "azul")
        self.assertEqual(vehicle.category, VehicleCategory.CAR)

    async def test_entry_scoping(self):
        with self.assertRaises(ValidationError):
            await self.ledger.register_entry(ADMIN, None, "ABC1234", VehicleCategory.CAR)
        with self.assertRaises(Forbidden):
            await self.ledger.register_entry(self.user, self.company_id + 1, "ABC1234", VehicleCategory.CAR)
        with self.assertRaises(NotFound):
            await self.ledger.register_entry(ADMIN, 999, "ABC1234", VehicleCategory.CAR)
        receipt = await self.ledger.register_entry(ADMIN, self.company_id, "ABC1234", VehicleCategory.CAR)
        self.assertTrue(receipt.created_vehicle)

    async def test_exit_closes_entry(self):
        receipt = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        self.clock.advance(minutes=95, seconds=30)

        exit_receipt = await self.ledger.register_exit(self.user, receipt.vehicle_id, 1200)

        self.assertEqual(exit_receipt.elapsed_minutes, 95)
        async with self.uow() as uow:
            record = await uow.ledger.get(exit_receipt.exit_record_id)
            self.assertIsNone(await uow.ledger.open_entry(receipt.vehicle_id))
        self.assertEqual(record.entry_id, receipt.entry_id)
        self.assertIsNone(record.payment_method)

    async def test_exit_without_entry(self):
        receipt = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        await self.ledger.register_exit(self.user, receipt.vehicle_id, 0)

        with self.assertRaises(NoOpenEntry):
            await self.ledger.register_exit(self.user, receipt.vehicle_id, 0)
        with self.assertRaises(NotFound):
            await self.ledger.register_exit(self.user, 999, 0)

    async def test_exit_rejects_negative_amount(self):
        receipt = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        with self.assertRaises(ValidationError):
            await self.ledger.register_exit(self.user, receipt.vehicle_id, -1)

    async def test_exit_blocked_while_on_spot(self):
        receipt = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        spots = SpotService(self.uow, clock=self.clock)
        await spots.occupy_spot(self.user, await spot_id(self.uow, self.company_id, 1), receipt.vehicle_id)

        with self.assertRaises(InvalidState):
            await self.ledger.register_exit(self.user, receipt.vehicle_id, 0)

    async def test_list_parked(self):
        a = await self.ledger.register_entry(self.user, None, "AAA1111", VehicleCategory.CAR)
        self.clock.advance(minutes=10)
        b = await self.ledger.register_entry(self.user, None, "BBB2222", VehicleCategory.MOTORCYCLE)
        self.clock.advance(minutes=5)
        await self.ledger.register_exit(self.user, a.vehicle_id, 400)

        parked = await self.ledger.list_parked(self.user)

        self.assertEqual([p.vehicle.plate for p in parked], ["BBB2222"])
        self.assertEqual(parked[0].entry_id, b.entry_id)
        self.assertEqual(parked[0].parked_seconds, 5 * 60)

    async def test_report(self):
        start = self.clock.now
        a = await self.ledger.register_entry(self.user, None, "AAA1111", VehicleCategory.CAR)
        await self.ledger.register_entry(self.user, None, "BBB2222", VehicleCategory.CAR)
        self.clock.advance(minutes=30)
        await self.ledger.register_exit(self.user, a.vehicle_id, 400)

        lines = {line.kind: line for line in await self.ledger.report(self.user, None, start, self.clock.now)}

        self.assertEqual((lines[LedgerKind.ENTRY].count, lines[LedgerKind.ENTRY].revenue), (2, 0))
        self.assertEqual((lines[LedgerKind.EXIT].count, lines[LedgerKind.EXIT].revenue), (1, 400))

        later = await self.ledger.list_records(self.user, since=start + timedelta(minutes=1))
        self.assertEqual([r.kind for r in later], [LedgerKind.EXIT])

        with self.assertRaises(ValidationError):
            await self.ledger.report(self.user, None, self.clock.now, start)

    async def test_spot_exit_shows_in_report(self):
        start = self.clock.now
        receipt = await self.ledger.register_entry(self.user, None, "ABC1234", VehicleCategory.CAR)
        spots = SpotService(self.uow, clock=self.clock)
        sid = await spot_id(self.uow, self.company_id, 2)
        await spots.occupy_spot(self.user, sid, receipt.vehicle_id)
        self.clock.advance(minutes=61)
        await spots.start_payment(self.user, sid)
        await spots.finalize_exit(self.user, sid, PaymentMethod.CASH, 1200)

        lines = {line.kind: line for line in await self.ledger.report(self.user, None, start, self.clock.now)}
        self.assertEqual(lines[LedgerKind.EXIT].revenue, 1200)


if __name__ == "__main__":
    unittest.main()
