import logging
from typing import List

from estacionai.application.ports import UnitOfWork, UnitOfWorkFactory
from estacionai.domain.access import require_admin
from estacionai.domain.errors import NotFound, ValidationError
from estacionai.domain.models import Identity, ReconcileResult

logger = logging.getLogger(__name__)


def free_numbers(taken: List[int], count: int) -> List[int]:
    """Los `count` numeros mas bajos (>= 1) que no estan en `taken`."""
    used = set(taken)
    numbers, n = [], 1
    while len(numbers) < count:
        if n not in used:
            numbers.append(n)
        n += 1
    return numbers


async def reconcile(uow: UnitOfWork, company_id: int, new_total: int) -> ReconcileResult:
    """
    Ajusta las filas de vagas al total configurado, dentro de la transaccion
    de `uow` y con la fila de la empresa bloqueada.

    Crece con los numeros libres mas bajos (count+1..new_total si no hay
    huecos). Achica borrando solo vagas `available`, de numero mas alto
    primero; si no alcanzan, borra las que hay y el resultado queda con
    complete == False.
    """
    if new_total < 0:
        raise ValidationError("total_spots no puede ser negativo", total_spots=new_total)
    company = await uow.companies.get(company_id, for_update=True)
    if company is None:
        raise NotFound("company", company_id)

    taken = await uow.spots.numbers(company_id)
    result = ReconcileResult(company_id=company_id, previous_count=len(taken), total_spots=new_total)

    if new_total > len(taken):
        result.added = free_numbers(taken, new_total - len(taken))
        await uow.spots.add_many(company_id, result.added)
    elif new_total < len(taken):
        result.requested_removal = len(taken) - new_total
        victims = await uow.spots.removable(company_id, result.requested_removal)
        await uow.spots.delete_many([s.id for s in victims])
        result.removed = [s.number for s in victims]

    if company.total_spots != new_total:
        await uow.companies.update(company_id, total_spots=new_total)

    if not result.complete:
        logger.warning(
            "[CAPACITY] company=%s asked to remove %s spots, only %s available; %s rows for total %s",
            company_id, result.requested_removal, len(result.removed),
            result.previous_count - len(result.removed), new_total,
        )
    return result


class CapacityService:
    def __init__(self, uow_factory: UnitOfWorkFactory):
        self.uow_factory = uow_factory

    async def reconcile_capacity(self, identity: Identity, company_id: int, new_total: int) -> ReconcileResult:
        require_admin(identity, "cambiar la cantidad de vagas")
        async with self.uow_factory() as uow:
            result = await reconcile(uow, company_id, new_total)
            await uow.commit()
        logger.info("[CAPACITY] company=%s %s -> %s added=%s removed=%s",
                    company_id, result.previous_count, new_total, result.added, result.removed)
        return result
