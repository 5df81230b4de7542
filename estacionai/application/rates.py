import logging
from typing import List, Optional

from estacionai.application.ports import UnitOfWork, UnitOfWorkFactory
from estacionai.domain.access import authorize, scope_company
from estacionai.domain.errors import RateNotConfigured, ValidationError
from estacionai.domain.models import Identity, RateConfig, VehicleCategory

logger = logging.getLogger(__name__)


async def rate_for(uow: UnitOfWork, company_id: int, category: VehicleCategory) -> RateConfig:
    rate = await uow.rates.get(company_id, category)
    if rate is None:
        raise RateNotConfigured(company_id, VehicleCategory(category).value)
    return rate


class RateService:
    def __init__(self, uow_factory: UnitOfWorkFactory):
        self.uow_factory = uow_factory

    async def upsert_rate(self, identity: Identity, company_id: Optional[int], category: VehicleCategory,
                          hourly_rate: int, fraction_rate: int) -> RateConfig:
        company_id = scope_company(identity, company_id)
        if hourly_rate < 0 or fraction_rate < 0:
            raise ValidationError(
                "las tarifas no pueden ser negativas", hourly_rate=hourly_rate, fraction_rate=fraction_rate
            )
        async with self.uow_factory() as uow:
            rate = await uow.rates.upsert(
                company_id=company_id,
                category=VehicleCategory(category),
                hourly_rate=hourly_rate,
                fraction_rate=fraction_rate,
            )
            await uow.commit()
        logger.info("[RATES] company=%s %s -> hourly=%s fraction=%s",
                    company_id, rate.category.value, hourly_rate, fraction_rate)
        return rate

    async def list_rates(self, identity: Identity, company_id: Optional[int] = None) -> List[RateConfig]:
        company_id = scope_company(identity, company_id)
        async with self.uow_factory() as uow:
            return await uow.rates.list(company_id)

    async def get_rate(self, identity: Identity, company_id: int, category: VehicleCategory) -> RateConfig:
        authorize(identity, company_id)
        async with self.uow_factory() as uow:
            return await rate_for(uow, company_id, category)
