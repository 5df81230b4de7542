from functools import partial

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from estacionai import config
from estacionai.adapters.auth import JwtCredentials, resolve_identity
from estacionai.adapters.repo_postgres import SqlUnitOfWork
from estacionai.application.capacity import CapacityService
from estacionai.application.companies import CompanyService, VehicleService
from estacionai.application.ledger import LedgerService
from estacionai.application.ports import UnitOfWorkFactory
from estacionai.application.rates import RateService
from estacionai.application.services import SpotService
from estacionai.domain.models import Identity

"""
Conexion a la DB (pool async), fabrica de unidades de trabajo e inyeccion
de servicios/identidad en los endpoints.
"""


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        kwargs = {"poolclass": StaticPool} if ":memory:" in url or url.endswith("://") else {}
        engine = create_async_engine(url, connect_args={"check_same_thread": False}, **kwargs)

        # Activar foreign keys en SQLite
        @event.listens_for(engine.sync_engine, "connect")
        def _fk_pragma(dbapi_conn, conn_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_pre_ping=True,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    engine, expire_on_commit=False
)


def get_uow_factory() -> UnitOfWorkFactory:
    return partial(SqlUnitOfWork, SessionLocal)


bearer = HTTPBearer(auto_error=False)


def get_identity(credentials: HTTPAuthorizationCredentials = Depends(bearer)) -> Identity:
    return resolve_identity(credentials.credentials if credentials else None)


def get_spot_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> SpotService:
    return SpotService(uow_factory, tolerance=config.PAYMENT_TOLERANCE_CENTS)


def get_ledger_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> LedgerService:
    return LedgerService(uow_factory)


def get_rate_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> RateService:
    return RateService(uow_factory)


def get_capacity_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> CapacityService:
    return CapacityService(uow_factory)


def get_company_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> CompanyService:
    return CompanyService(uow_factory, JwtCredentials(), default_total_spots=config.DEFAULT_TOTAL_SPOTS)


def get_vehicle_service(uow_factory: UnitOfWorkFactory = Depends(get_uow_factory)) -> VehicleService:
    return VehicleService(uow_factory)
