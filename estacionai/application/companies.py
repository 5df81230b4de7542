import logging
import re
import secrets
from typing import List, Optional, Tuple

from estacionai.application.capacity import reconcile
from estacionai.application.ledger import validate_plate
from estacionai.application.ports import Credentials, UnitOfWorkFactory
from estacionai.domain.access import authorize, require_admin, scope_company
from estacionai.domain.errors import DuplicateKey, InvalidState, NotFound, Unauthorized, ValidationError
from estacionai.domain.models import (
    Company, Identity, ReconcileResult, SpotStatus, Vehicle, VehicleCategory,
)

"""
Alta/edicion de empresas y vehiculos, y login. Pegamento alrededor del motor
de vagas: lo unico con logica es que cambiar total_spots corre el reconcile
en la misma transaccion.

Hash de claves y tokens llegan por el puerto Credentials.
"""

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_SPOTS = 20
RESET_PASSWORD_BYTES = 9  # token_urlsafe -> 12 caracteres

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_tax_id(tax_id: str) -> str:
    digits = re.sub(r"\D", "", tax_id or "")
    if len(digits) != 14:
        raise ValidationError("tax_id debe tener 14 digitos", field="tax_id")
    return digits


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError(f"email invalido: {email!r}", field="email")
    return email


def parse_category(category) -> VehicleCategory:
    try:
        return VehicleCategory(category)
    except ValueError:
        raise ValidationError(f"categoria invalida: {category!r}", field="category")


class CompanyService:
    def __init__(self, uow_factory: UnitOfWorkFactory, credentials: Credentials,
                 default_total_spots: int = DEFAULT_TOTAL_SPOTS):
        self.uow_factory = uow_factory
        self.credentials = credentials
        self.default_total_spots = default_total_spots

    async def register_company(self, identity: Identity, *, name: str, tax_id: str, email: str, password: str,
                               phone: Optional[str] = None, address: Optional[str] = None,
                               total_spots: Optional[int] = None) -> Tuple[Company, ReconcileResult]:
        require_admin(identity, "registrar empresas")
        name = (name or "").strip()
        if not name:
            raise ValidationError("name es obligatorio", field="name")
        if not password:
            raise ValidationError("password es obligatorio", field="password")
        total = self.default_total_spots if total_spots is None else total_spots

        async with self.uow_factory() as uow:
            company = await uow.companies.add(
                name=name,
                tax_id=normalize_tax_id(tax_id),
                email=normalize_email(email),
                password_hash=self.credentials.hash_password(password),
                phone=phone,
                address=address,
            )
            result = await reconcile(uow, company.id, total)
            company = await uow.companies.get(company.id)
            await uow.commit()

        logger.info("[COMPANIES] registered company=%s with %s spots", company.id, len(result.added))
        return company, result

    async def get_company(self, identity: Identity, company_id: int) -> Company:
        authorize(identity, company_id)
        async with self.uow_factory() as uow:
            company = await uow.companies.get(company_id)
        if company is None:
            raise NotFound("company", company_id)
        return company

    async def list_companies(self, identity: Identity) -> List[Company]:
        if not identity.is_admin:
            return [await self.get_company(identity, identity.company_id)]
        async with self.uow_factory() as uow:
            return await uow.companies.list()

    async def update_company(self, identity: Identity, company_id: int, *, name: Optional[str] = None,
                             phone: Optional[str] = None, address: Optional[str] = None,
                             total_spots: Optional[int] = None) -> Tuple[Company, Optional[ReconcileResult]]:
        authorize(identity, company_id)
        if total_spots is not None:
            require_admin(identity, "cambiar la cantidad de vagas")
        fields = {k: v for k, v in (("name", name), ("phone", phone), ("address", address)) if v is not None}
        if "name" in fields and not fields["name"].strip():
            raise ValidationError("name no puede quedar vacio", field="name")

        result = None
        async with self.uow_factory() as uow:
            if await uow.companies.get(company_id, for_update=True) is None:
                raise NotFound("company", company_id)
            if fields:
                await uow.companies.update(company_id, **fields)
            if total_spots is not None:
                result = await reconcile(uow, company_id, total_spots)
            company = await uow.companies.get(company_id)
            await uow.commit()
        return company, result

    async def delete_company(self, identity: Identity, company_id: int) -> None:
        require_admin(identity, "borrar empresas")
        async with self.uow_factory() as uow:
            if await uow.companies.get(company_id, for_update=True) is None:
                raise NotFound("company", company_id)
            busy = [s.number for s in await uow.spots.list(company_id)
                    if s.status in (SpotStatus.OCCUPIED, SpotStatus.PAYING)]
            if busy:
                raise InvalidState(f"la empresa {company_id} todavia tiene vagas ocupadas", spots=busy)
            await uow.companies.delete(company_id)
            await uow.commit()
        logger.info("[COMPANIES] deleted company=%s", company_id)

    async def reset_company_password(self, identity: Identity, company_id: int) -> str:
        """Genera una clave nueva; el texto plano solo se devuelve aca."""
        require_admin(identity, "resetear claves de empresas")
        password = secrets.token_urlsafe(RESET_PASSWORD_BYTES)
        async with self.uow_factory() as uow:
            if await uow.companies.get(company_id, for_update=True) is None:
                raise NotFound("company", company_id)
            await uow.companies.update(company_id, password_hash=self.credentials.hash_password(password))
            await uow.commit()
        logger.info("[AUTH] password reset for company=%s", company_id)
        return password

    async def login_company(self, email: str, password: str) -> Tuple[str, Company]:
        async with self.uow_factory() as uow:
            company = await uow.companies.get_by_email((email or "").strip().lower())
        if company is None or not self.credentials.verify_password(company.password_hash, password):
            logger.warning("[AUTH] failed company login for %s", email)
            raise Unauthorized("credenciales invalidas")
        return self.credentials.issue_token(Identity(id=company.id, role="company")), company

    async def login_admin(self, email: str, password: str) -> str:
        async with self.uow_factory() as uow:
            admin = await uow.admins.get_by_email((email or "").strip().lower())
        if admin is None or not self.credentials.verify_password(admin.password_hash, password):
            logger.warning("[AUTH] failed admin login for %s", email)
            raise Unauthorized("credenciales invalidas")
        return self.credentials.issue_token(Identity(id=admin.id, role="admin"))


class VehicleService:
    def __init__(self, uow_factory: UnitOfWorkFactory):
        self.uow_factory = uow_factory

    async def register_vehicle(self, identity: Identity, company_id: Optional[int], plate: str,
                               category: VehicleCategory, model: Optional[str] = None,
                               color: Optional[str] = None) -> Vehicle:
        """Pre-registro: el vehiculo queda cargado sin entrada en el libro."""
        company_id = scope_company(identity, company_id)
        plate = validate_plate(plate)
        category = parse_category(category)

        async with self.uow_factory() as uow:
            if await uow.companies.get(company_id) is None:
                raise NotFound("company", company_id)
            if await uow.vehicles.get_by_plate(company_id, plate, for_update=True) is not None:
                raise DuplicateKey(f"la placa {plate} ya esta registrada", plate=plate, company_id=company_id)
            vehicle = await uow.vehicles.add(company_id=company_id, plate=plate, category=category,
                                             model=model, color=color)
            await uow.commit()
        logger.info("[VEHICLES] registered vehicle=%s plate=%s company=%s", vehicle.id, plate, company_id)
        return vehicle

    async def list_vehicles(self, identity: Identity, company_id: Optional[int] = None) -> List[Vehicle]:
        company_id = scope_company(identity, company_id)
        async with self.uow_factory() as uow:
            return await uow.vehicles.list(company_id)

    async def get_vehicle(self, identity: Identity, vehicle_id: int) -> Vehicle:
        async with self.uow_factory() as uow:
            vehicle = await uow.vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFound("vehicle", vehicle_id)
        authorize(identity, vehicle.company_id)
        return vehicle

    async def update_vehicle(self, identity: Identity, vehicle_id: int, *, model: Optional[str] = None,
                             color: Optional[str] = None, category: Optional[VehicleCategory] = None) -> Vehicle:
        fields = {k: v for k, v in (("model", model), ("color", color)) if v is not None}
        if category is not None:
            fields["category"] = parse_category(category)
        async with self.uow_factory() as uow:
            vehicle = await uow.vehicles.get(vehicle_id, for_update=True)
            if vehicle is None:
                raise NotFound("vehicle", vehicle_id)
            authorize(identity, vehicle.company_id)
            if fields:
                vehicle = await uow.vehicles.update(vehicle_id, **fields)
                await uow.commit()
        return vehicle

    async def delete_vehicle(self, identity: Identity, vehicle_id: int) -> None:
        """Solo vehiculos sin historial: el libro es append-only y lo referencia."""
        async with self.uow_factory() as uow:
            vehicle = await uow.vehicles.get(vehicle_id, for_update=True)
            if vehicle is None:
                raise NotFound("vehicle", vehicle_id)
            authorize(identity, vehicle.company_id)

            spot = await uow.spots.find_by_vehicle(vehicle.id)
            if spot is not None:
                raise InvalidState(f"el vehiculo {vehicle.id} ocupa la vaga {spot.number}",
                                   vehicle_id=vehicle.id, spot_id=spot.id)
            entry = await uow.ledger.open_entry(vehicle.id)
            if entry is not None:
                raise InvalidState(f"el vehiculo {vehicle.id} tiene la entrada abierta {entry.id}",
                                   vehicle_id=vehicle.id, entry_id=entry.id)
            records = await uow.ledger.count_for_vehicle(vehicle.id)
            if records:
                raise InvalidState(f"el vehiculo {vehicle.id} tiene historial en el libro",
                                   vehicle_id=vehicle.id, records=records)

            await uow.vehicles.delete(vehicle.id)
            await uow.commit()
        logger.info("[VEHICLES] deleted vehicle=%s plate=%s", vehicle.id, vehicle.plate)
