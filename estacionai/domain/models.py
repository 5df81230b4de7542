from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional, List
from datetime import datetime
from enum import Enum

"""
Contratos del dominio (Pydantic): estados de vaga, categorias, identidad del
llamador y las vistas que devuelven los servicios.

Los montos viajan en centavos (int) dentro del nucleo; las funciones *_out del
adaptador HTTP los convierten a texto decimal.
"""


class SpotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    PAYING = "paying"
    UNAVAILABLE = "unavailable"
    MAINTENANCE = "maintenance"


class VehicleCategory(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    TRUCK = "truck"


class LedgerKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PIX = "pix"
    CASH = "cash"

    @property
    def needs_document(self) -> bool:
        return self in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD)


Role = Literal["admin", "company"]


class Identity(BaseModel):
    """Llamador ya autenticado (lo resuelve el colaborador de auth)."""
    model_config = ConfigDict(frozen=True)

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def company_id(self) -> Optional[int]:
        return self.id if self.role == "company" else None


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Company(_Record):
    id: int
    name: str
    tax_id: str
    email: str
    password_hash: str = Field(repr=False)
    phone: Optional[str] = None
    address: Optional[str] = None
    total_spots: int = 0
    created_at: Optional[datetime] = None


class Administrator(_Record):
    id: int
    name: str
    email: str
    password_hash: str = Field(repr=False)


class Vehicle(_Record):
    id: int
    company_id: int
    plate: str
    category: VehicleCategory
    model: Optional[str] = None
    color: Optional[str] = None


class RateConfig(_Record):
    id: int
    company_id: int
    category: VehicleCategory
    hourly_rate: int
    fraction_rate: int


class LedgerEntry(_Record):
    id: int
    company_id: int
    vehicle_id: int
    kind: LedgerKind
    recorded_at: datetime
    entry_id: Optional[int] = None
    charge: Optional[int] = None
    elapsed_minutes: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    document_number: Optional[str] = None


class Occupancy(BaseModel):
    vehicle_id: int
    entry_id: Optional[int]
    entered_at: datetime
    estimated_minutes: Optional[int] = None
    deadline: Optional[datetime] = None


class Spot(_Record):
    id: int
    company_id: int
    number: int
    status: SpotStatus = SpotStatus.AVAILABLE
    vehicle_id: Optional[int] = None
    entry_id: Optional[int] = None
    entered_at: Optional[datetime] = None
    estimated_minutes: Optional[int] = None
    deadline: Optional[datetime] = None

    @property
    def is_clear(self) -> bool:
        return (
            self.vehicle_id is None
            and self.entry_id is None
            and self.entered_at is None
            and self.estimated_minutes is None
            and self.deadline is None
        )


class SpotView(BaseModel):
    """Vaga + datos del ocupante para el listado."""
    spot: Spot
    plate: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    category: Optional[VehicleCategory] = None


class ChargeQuote(BaseModel):
    spot_id: int
    total: int
    elapsed_minutes: int
    hours: int
    minutes: int
    fractions: int
    exceeded_deadline: bool
    deadline: Optional[datetime] = None
    estimated_minutes: Optional[int] = None


class EntryReceipt(BaseModel):
    vehicle_id: int
    entry_id: int
    recorded_at: datetime
    created_vehicle: bool = False


class ExitReceipt(BaseModel):
    exit_record_id: int
    charge: int
    elapsed_minutes: int


class ParkedVehicle(BaseModel):
    vehicle: Vehicle
    entry_id: int
    entered_at: datetime
    parked_seconds: int


class ReportLine(BaseModel):
    kind: LedgerKind
    count: int
    revenue: int


class ReconcileResult(BaseModel):
    company_id: int
    previous_count: int
    total_spots: int
    added: List[int] = Field(default_factory=list)
    removed: List[int] = Field(default_factory=list)
    requested_removal: int = 0

    @property
    def complete(self) -> bool:
        return len(self.removed) >= self.requested_removal
