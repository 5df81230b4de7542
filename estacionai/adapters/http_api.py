from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from estacionai.application.capacity import CapacityService
from estacionai.application.companies import CompanyService, VehicleService
from estacionai.application.ledger import LedgerService
from estacionai.application.rates import RateService
from estacionai.application.services import SpotService
from estacionai.deps import (
    get_capacity_service, get_company_service, get_identity, get_ledger_service,
    get_rate_service, get_spot_service, get_vehicle_service,
)
from estacionai.domain import errors
from estacionai.domain.fees import from_cents, to_cents
from estacionai.domain.models import (
    Company, Identity, LedgerEntry, PaymentMethod, RateConfig, ReconcileResult,
    Spot, SpotStatus, VehicleCategory,
)

"""
Endpoints REST (montados en /v1 por main.py).

Cada endpoint resuelve la Identity del bearer token, arma el servicio con la
fabrica de unidades de trabajo y traduce montos: Decimal en el wire,
centavos en el nucleo. Los errores del nucleo se convierten a JSON en
parking_error_handler.
"""

api_router = APIRouter()

ERROR_STATUS = {
    errors.NotFound: status.HTTP_404_NOT_FOUND,
    errors.Forbidden: status.HTTP_403_FORBIDDEN,
    errors.Unauthorized: status.HTTP_401_UNAUTHORIZED,
    errors.InvalidState: status.HTTP_409_CONFLICT,
    errors.AlreadyParked: status.HTTP_409_CONFLICT,
    errors.NoOpenEntry: status.HTTP_409_CONFLICT,
    errors.RateNotConfigured: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.AmountMismatch: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.DuplicateKey: status.HTTP_409_CONFLICT,
    errors.ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


async def parking_error_handler(request: Request, exc: errors.ParkingError) -> JSONResponse:
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)


# ---------- Payloads ----------
class LoginIn(BaseModel):
    email: str
    password: str

class CompanyIn(BaseModel):
    name: str
    tax_id: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    total_spots: Optional[int] = Field(default=None, ge=0)

class CompanyPatch(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    total_spots: Optional[int] = Field(default=None, ge=0)

class CapacityIn(BaseModel):
    total_spots: int = Field(ge=0)

class OccupyIn(BaseModel):
    vehicle_id: int
    entry_id: Optional[int] = None
    estimated_minutes: Optional[int] = Field(default=None, gt=0)

class FinalizeExitIn(BaseModel):
    payment_method: PaymentMethod
    document_number: Optional[str] = None
    charged_amount: Decimal

class StatusIn(BaseModel):
    status: SpotStatus

class EntryIn(BaseModel):
    company_id: Optional[int] = None
    plate: str
    category: Optional[VehicleCategory] = None
    model: Optional[str] = None
    color: Optional[str] = None

class ExitIn(BaseModel):
    vehicle_id: int
    charged_amount: Decimal

class RateIn(BaseModel):
    company_id: Optional[int] = None
    category: VehicleCategory
    hourly_rate: Decimal
    fraction_rate: Decimal

class VehicleIn(BaseModel):
    company_id: Optional[int] = None
    plate: str
    category: VehicleCategory
    model: Optional[str] = None
    color: Optional[str] = None

class VehiclePatch(BaseModel):
    model: Optional[str] = None
    color: Optional[str] = None
    category: Optional[VehicleCategory] = None


# ---------- Serializacion ----------
def money(cents: Optional[int]) -> Optional[str]:
    return None if cents is None else str(from_cents(cents))

def company_out(c: Company) -> dict:
    return c.model_dump(mode="json", exclude={"password_hash"})

def spot_out(s: Spot) -> dict:
    return s.model_dump(mode="json")

def rate_out(r: RateConfig) -> dict:
    return {**r.model_dump(mode="json"), "hourly_rate": money(r.hourly_rate), "fraction_rate": money(r.fraction_rate)}

def record_out(r: LedgerEntry) -> dict:
    return {**r.model_dump(mode="json"), "charge": money(r.charge)}

def reconcile_out(r: ReconcileResult) -> dict:
    return {**r.model_dump(mode="json"), "complete": r.complete}


# ---------- Auth ----------
@api_router.post("/auth/admin/login", tags=["auth"])
async def admin_login(body: LoginIn, svc: CompanyService = Depends(get_company_service)):
    token = await svc.login_admin(body.email, body.password)
    return {"token": token}

@api_router.post("/auth/company/login", tags=["auth"])
async def company_login(body: LoginIn, svc: CompanyService = Depends(get_company_service)):
    token, company = await svc.login_company(body.email, body.password)
    return {"token": token, "company": company_out(company)}


# ---------- Empresas ----------
@api_router.get("/companies", tags=["companies"])
async def list_companies(identity: Identity = Depends(get_identity),
                         svc: CompanyService = Depends(get_company_service)):
    return [company_out(c) for c in await svc.list_companies(identity)]

@api_router.post("/companies", status_code=status.HTTP_201_CREATED, tags=["companies"])
async def register_company(body: CompanyIn, identity: Identity = Depends(get_identity),
                           svc: CompanyService = Depends(get_company_service)):
    company, result = await svc.register_company(identity, **body.model_dump())
    return {**company_out(company), "spots": reconcile_out(result)}

@api_router.get("/companies/{company_id}", tags=["companies"])
async def get_company(company_id: int, identity: Identity = Depends(get_identity),
                      svc: CompanyService = Depends(get_company_service)):
    return company_out(await svc.get_company(identity, company_id))

@api_router.patch("/companies/{company_id}", tags=["companies"])
async def update_company(company_id: int, body: CompanyPatch, identity: Identity = Depends(get_identity),
                         svc: CompanyService = Depends(get_company_service)):
    company, result = await svc.update_company(identity, company_id, **body.model_dump())
    return {**company_out(company), "spots": reconcile_out(result) if result else None}

@api_router.delete("/companies/{company_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["companies"])
async def delete_company(company_id: int, identity: Identity = Depends(get_identity),
                         svc: CompanyService = Depends(get_company_service)):
    await svc.delete_company(identity, company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@api_router.post("/companies/{company_id}/reset-password", tags=["companies"])
async def reset_company_password(company_id: int, identity: Identity = Depends(get_identity),
                                 svc: CompanyService = Depends(get_company_service)):
    return {"password": await svc.reset_company_password(identity, company_id)}

@api_router.put("/companies/{company_id}/capacity", tags=["companies"])
async def reconcile_capacity(company_id: int, body: CapacityIn, identity: Identity = Depends(get_identity),
                             svc: CapacityService = Depends(get_capacity_service)):
    return reconcile_out(await svc.reconcile_capacity(identity, company_id, body.total_spots))


# ---------- Vagas ----------
@api_router.get("/spots", tags=["spots"])
async def list_spots(company_id: Optional[int] = None, identity: Identity = Depends(get_identity),
                     svc: SpotService = Depends(get_spot_service)):
    return [
        {**spot_out(v.spot), "plate": v.plate, "model": v.model, "color": v.color,
         "category": v.category.value if v.category else None}
        for v in await svc.list_spots(identity, company_id)
    ]

@api_router.post("/spots/{spot_id}/occupy", tags=["spots"])
async def occupy_spot(spot_id: int, body: OccupyIn, identity: Identity = Depends(get_identity),
                      svc: SpotService = Depends(get_spot_service)):
    spot = await svc.occupy_spot(identity, spot_id, body.vehicle_id, body.entry_id, body.estimated_minutes)
    return spot_out(spot)

@api_router.post("/spots/{spot_id}/start-payment", tags=["spots"])
async def start_payment(spot_id: int, identity: Identity = Depends(get_identity),
                        svc: SpotService = Depends(get_spot_service)):
    return spot_out(await svc.start_payment(identity, spot_id))

@api_router.get("/spots/{spot_id}/charge", tags=["spots"])
async def current_charge(spot_id: int, identity: Identity = Depends(get_identity),
                         svc: SpotService = Depends(get_spot_service)):
    quote = await svc.calculate_current_charge(identity, spot_id)
    return {**quote.model_dump(mode="json"), "total": money(quote.total)}

@api_router.post("/spots/{spot_id}/finalize-exit", tags=["spots"])
async def finalize_exit(spot_id: int, body: FinalizeExitIn, identity: Identity = Depends(get_identity),
                        svc: SpotService = Depends(get_spot_service)):
    receipt = await svc.finalize_exit(identity, spot_id, body.payment_method,
                                      to_cents(body.charged_amount), body.document_number)
    return {**receipt.model_dump(mode="json"), "charge": money(receipt.charge)}

@api_router.post("/spots/{spot_id}/release", tags=["spots"])
async def release_spot(spot_id: int, identity: Identity = Depends(get_identity),
                       svc: SpotService = Depends(get_spot_service)):
    return spot_out(await svc.release_spot(identity, spot_id))

@api_router.put("/spots/{spot_id}/status", tags=["spots"])
async def set_spot_status(spot_id: int, body: StatusIn, identity: Identity = Depends(get_identity),
                          svc: SpotService = Depends(get_spot_service)):
    return spot_out(await svc.set_spot_status(identity, spot_id, body.status))


# ---------- Libro ----------
@api_router.post("/ledger/entries", status_code=status.HTTP_201_CREATED, tags=["ledger"])
async def register_entry(body: EntryIn, identity: Identity = Depends(get_identity),
                         svc: LedgerService = Depends(get_ledger_service)):
    receipt = await svc.register_entry(identity, body.company_id, body.plate, body.category, body.model, body.color)
    return receipt.model_dump(mode="json")

@api_router.post("/ledger/exits", status_code=status.HTTP_201_CREATED, tags=["ledger"])
async def register_exit(body: ExitIn, identity: Identity = Depends(get_identity),
                        svc: LedgerService = Depends(get_ledger_service)):
    receipt = await svc.register_exit(identity, body.vehicle_id, to_cents(body.charged_amount))
    return {**receipt.model_dump(mode="json"), "charge": money(receipt.charge)}

@api_router.get("/ledger", tags=["ledger"])
async def list_records(company_id: Optional[int] = None, since: Optional[datetime] = None,
                       until: Optional[datetime] = None, identity: Identity = Depends(get_identity),
                       svc: LedgerService = Depends(get_ledger_service)):
    return [record_out(r) for r in await svc.list_records(identity, company_id, since, until)]

@api_router.get("/ledger/report", tags=["ledger"])
async def report(since: datetime, until: datetime, company_id: Optional[int] = None,
                 identity: Identity = Depends(get_identity), svc: LedgerService = Depends(get_ledger_service)):
    lines = await svc.report(identity, company_id, since, until)
    return [{**line.model_dump(mode="json"), "revenue": money(line.revenue)} for line in lines]


# ---------- Vehiculos ----------
@api_router.get("/vehicles", tags=["vehicles"])
async def list_vehicles(company_id: Optional[int] = None, identity: Identity = Depends(get_identity),
                        svc: VehicleService = Depends(get_vehicle_service)):
    return [v.model_dump(mode="json") for v in await svc.list_vehicles(identity, company_id)]

@api_router.post("/vehicles", status_code=status.HTTP_201_CREATED, tags=["vehicles"])
async def register_vehicle(body: VehicleIn, identity: Identity = Depends(get_identity),
                           svc: VehicleService = Depends(get_vehicle_service)):
    vehicle = await svc.register_vehicle(identity, body.company_id, body.plate, body.category, body.model, body.color)
    return vehicle.model_dump(mode="json")

@api_router.get("/vehicles/parked", tags=["vehicles"])
async def list_parked(company_id: Optional[int] = None, identity: Identity = Depends(get_identity),
                      svc: LedgerService = Depends(get_ledger_service)):
    return [p.model_dump(mode="json") for p in await svc.list_parked(identity, company_id)]

@api_router.get("/vehicles/{vehicle_id}", tags=["vehicles"])
async def get_vehicle(vehicle_id: int, identity: Identity = Depends(get_identity),
                      svc: VehicleService = Depends(get_vehicle_service)):
    return (await svc.get_vehicle(identity, vehicle_id)).model_dump(mode="json")

@api_router.patch("/vehicles/{vehicle_id}", tags=["vehicles"])
async def update_vehicle(vehicle_id: int, body: VehiclePatch, identity: Identity = Depends(get_identity),
                         svc: VehicleService = Depends(get_vehicle_service)):
    vehicle = await svc.update_vehicle(identity, vehicle_id, **body.model_dump())
    return vehicle.model_dump(mode="json")

@api_router.delete("/vehicles/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["vehicles"])
async def delete_vehicle(vehicle_id: int, identity: Identity = Depends(get_identity),
                         svc: VehicleService = Depends(get_vehicle_service)):
    await svc.delete_vehicle(identity, vehicle_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Tarifas ----------
@api_router.get("/rates", tags=["rates"])
async def list_rates(company_id: Optional[int] = None, identity: Identity = Depends(get_identity),
                     svc: RateService = Depends(get_rate_service)):
    return [rate_out(r) for r in await svc.list_rates(identity, company_id)]

@api_router.put("/rates", tags=["rates"])
async def upsert_rate(body: RateIn, identity: Identity = Depends(get_identity),
                      svc: RateService = Depends(get_rate_service)):
    rate = await svc.upsert_rate(identity, body.company_id, body.category,
                                 to_cents(body.hourly_rate), to_cents(body.fraction_rate))
    return {"rate_id": rate.id, **rate_out(rate)}
