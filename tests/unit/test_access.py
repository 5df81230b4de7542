#!/usr/bin/env python3
"""
Access policy and spot transition table tests.
"""

import unittest

from estacionai.domain.access import authorize, can_access, require_admin, scope_company
from estacionai.domain.errors import (
    AmountMismatch, Forbidden, InvalidState, NoOpenEntry, NotFound, ValidationError,
)
from estacionai.domain.models import Spot, SpotStatus
from estacionai.domain.spots import require_transition
from tests.support import ADMIN, staff


class TestAccessPolicy(unittest.TestCase):
    """Unit tests for the admin / company-staff policy"""

    def test_admin_reaches_every_company(self):
        self.assertTrue(can_access(ADMIN, 7))
        authorize(ADMIN, 7)

    def test_staff_limited_to_own_company(self):
        self.assertTrue(can_access(staff(3), 3))
        self.assertFalse(can_access(staff(3), 4))
        with self.assertRaises(Forbidden):
            authorize(staff(3), 4)

    def test_require_admin(self):
        require_admin(ADMIN)
        with self.assertRaises(Forbidden):
            require_admin(staff(3))

    def test_scope_company(self):
        self.assertEqual(scope_company(staff(3)), 3)
        self.assertEqual(scope_company(staff(3), 3), 3)
        self.assertEqual(scope_company(ADMIN, 9), 9)
        with self.assertRaises(Forbidden):
            scope_company(staff(3), 9)
        with self.assertRaises(ValidationError):
            scope_company(ADMIN)


class TestTransitionTable(unittest.TestCase):
    """Unit tests for require_transition"""

    def spot(self, status):
        return Spot(id=1, company_id=1, number=1, status=status)

    def test_valid_transitions(self):
        self.assertEqual(require_transition(self.spot(SpotStatus.AVAILABLE), "occupy")[1], SpotStatus.OCCUPIED)
        self.assertEqual(require_transition(self.spot(SpotStatus.OCCUPIED), "start_payment")[1], SpotStatus.PAYING)
        self.assertEqual(require_transition(self.spot(SpotStatus.PAYING), "finalize_exit")[1], SpotStatus.AVAILABLE)
        self.assertEqual(require_transition(self.spot(SpotStatus.PAYING), "release")[1], SpotStatus.AVAILABLE)

    def test_invalid_transitions(self):
        cases = [
            (SpotStatus.OCCUPIED, "occupy"),
            (SpotStatus.MAINTENANCE, "occupy"),
            (SpotStatus.AVAILABLE, "start_payment"),
            (SpotStatus.OCCUPIED, "finalize_exit"),
            (SpotStatus.AVAILABLE, "release"),
        ]
        for status, event in cases:
            with self.subTest(status=status, event=event):
                with self.assertRaises(InvalidState) as ctx:
                    require_transition(self.spot(status), event)
                self.assertEqual(ctx.exception.detail["status"], status.value)


class TestErrorMessages(unittest.TestCase):
    """Error messages share the codebase language; clients key on code and detail"""

    def test_messages_are_spanish(self):
        cases = [
            (NotFound("spot", 9), "spot 9 no encontrado"),
            (NoOpenEntry(3), "el vehiculo 3 no tiene entrada abierta"),
            (AmountMismatch(200, 500), "el valor cobrado no coincide con la tarifa calculada"),
        ]
        for error, message in cases:
            with self.subTest(code=error.code):
                self.assertEqual(error.message, message)
                self.assertEqual(error.to_dict()["message"], message)

        with self.assertRaises(Forbidden) as ctx:
            require_admin(staff(1))
        self.assertEqual(ctx.exception.message, "solo un administrador puede hacer: esta operacion")
        with self.assertRaises(InvalidState) as ctx:
            require_transition(Spot(id=1, company_id=1, number=4, status=SpotStatus.MAINTENANCE), "occupy")
        self.assertEqual(ctx.exception.message, "la vaga 4 esta maintenance, no admite occupy")


if __name__ == "__main__":
    unittest.main()
