from typing import Dict, FrozenSet, Tuple

from .errors import InvalidState
from .models import Spot, SpotStatus

"""
Maquina de estados de la vaga.

    available --occupy--> occupied --start_payment--> paying --finalize_exit--> available
    occupied|paying --release--> available     (override administrativo)
    unavailable|maintenance con ocupante --release--> mismo estado, sin ocupante
    *          --set_status--> available|unavailable|maintenance

set_status no pasa por esta tabla: es un override directo.
"""

Transition = Tuple[FrozenSet[SpotStatus], SpotStatus]

TRANSITIONS: Dict[str, Transition] = {
    "occupy": (frozenset({SpotStatus.AVAILABLE}), SpotStatus.OCCUPIED),
    "start_payment": (frozenset({SpotStatus.OCCUPIED}), SpotStatus.PAYING),
    "finalize_exit": (frozenset({SpotStatus.PAYING}), SpotStatus.AVAILABLE),
    "release": (frozenset({SpotStatus.OCCUPIED, SpotStatus.PAYING}), SpotStatus.AVAILABLE),
}

OVERRIDE_TARGETS = frozenset({SpotStatus.AVAILABLE, SpotStatus.UNAVAILABLE, SpotStatus.MAINTENANCE})
BLOCKED = frozenset({SpotStatus.UNAVAILABLE, SpotStatus.MAINTENANCE})


def require_transition(spot: Spot, event: str) -> Transition:
    """Devuelve (estados origen, destino) o InvalidState si la vaga no esta en un origen valido."""
    sources, target = TRANSITIONS[event]
    if spot.status not in sources:
        raise InvalidState(
            f"la vaga {spot.number} esta {spot.status.value}, no admite {event}",
            spot_id=spot.id,
            status=spot.status.value,
            expected=sorted(s.value for s in sources),
            event=event,
        )
    return sources, target
