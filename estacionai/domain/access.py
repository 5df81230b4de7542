from typing import Optional

from .errors import Forbidden, ValidationError
from .models import Identity

"""
Politica de acceso: un solo lugar para "admin o staff de la empresa duena".
"""


def can_access(identity: Identity, company_id: int) -> bool:
    return identity.is_admin or identity.company_id == company_id


def authorize(identity: Identity, company_id: int) -> None:
    if not can_access(identity, company_id):
        raise Forbidden(
            f"{identity.role}:{identity.id} no tiene acceso a la empresa {company_id}",
            company_id=company_id,
        )


def require_admin(identity: Identity, action: str = "esta operacion") -> None:
    if not identity.is_admin:
        raise Forbidden(f"solo un administrador puede hacer: {action}", action=action)


def scope_company(identity: Identity, company_id: Optional[int] = None) -> int:
    """
    Empresa efectiva del pedido: la propia para staff (o la pedida, si coincide),
    la pedida para admin (obligatoria).
    """
    if company_id is None:
        if identity.is_admin:
            raise ValidationError("company_id es obligatorio para administradores", field="company_id")
        return identity.company_id
    authorize(identity, company_id)
    return company_id
