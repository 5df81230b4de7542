from typing import Any, Dict, Optional

"""
Taxonomia de errores del nucleo.

Cada error es terminal para la operacion en curso: la unidad de trabajo hace
rollback y el adaptador HTTP lo traduce a un status code en un unico handler.
`detail` lleva los ids/valores necesarios para armar un mensaje preciso.
"""


class ParkingError(Exception):
    code = "error"

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.detail}


class NotFound(ParkingError):
    code = "not_found"

    def __init__(self, kind: str, ident: Any):
        super().__init__(f"{kind} {ident} no encontrado", kind=kind, id=ident)


class Forbidden(ParkingError):
    code = "forbidden"


class Unauthorized(ParkingError):
    code = "unauthorized"


class InvalidState(ParkingError):
    code = "invalid_state"


class AlreadyParked(ParkingError):
    code = "already_parked"

    def __init__(self, vehicle_id: int, entry_id: int):
        super().__init__(
            f"el vehiculo {vehicle_id} ya tiene la entrada abierta {entry_id}",
            vehicle_id=vehicle_id,
            entry_id=entry_id,
        )


class NoOpenEntry(ParkingError):
    code = "no_open_entry"

    def __init__(self, vehicle_id: int, entry_id: Optional[int] = None):
        super().__init__(
            f"el vehiculo {vehicle_id} no tiene entrada abierta",
            vehicle_id=vehicle_id,
            entry_id=entry_id,
        )


class RateNotConfigured(ParkingError):
    code = "rate_not_configured"

    def __init__(self, company_id: int, category: str):
        super().__init__(
            f"no hay tarifa para {category} en la empresa {company_id}",
            company_id=company_id,
            category=category,
        )


class AmountMismatch(ParkingError):
    """Valor informado fuera de la tolerancia del valor calculado (en centavos)."""

    code = "amount_mismatch"

    def __init__(self, expected_cents: int, submitted_cents: int):
        from .fees import from_cents

        super().__init__(
            "el valor cobrado no coincide con la tarifa calculada",
            expected=str(from_cents(expected_cents)),
            submitted=str(from_cents(submitted_cents)),
            difference=str(from_cents(abs(submitted_cents - expected_cents))),
        )
        self.expected_cents = expected_cents
        self.submitted_cents = submitted_cents


class DuplicateKey(ParkingError):
    code = "duplicate_key"


class ValidationError(ParkingError):
    code = "validation_error"
