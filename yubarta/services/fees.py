# ==============================================================================
# TARIFAS - Comisión de gestión y penalidad por kilogramo
# ==============================================================================
# La comisión de gestión (COP/kg) la asume el autor de la propuesta.
# La penalidad por incumplimiento de la contraparte es SIEMPRE igual a la
# comisión guardada en la propuesta (espejo exacto).
#
# La tabla es monótona no creciente respecto al volumen total en toneladas.
# ==============================================================================

import logging
import math
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Versión de la tabla. Se guarda junto a la comisión al crear la propuesta.
FEE_SCHEDULE_VERSION = 1

# (tope en toneladas, COP por kg) - tramos fijos por debajo de 6.000 t
FEE_BRACKETS = (
    (0.5, 250.0),
    (1, 200.0),
    (3, 180.0),
    (5, 160.0),
    (10, 140.0),
    (25, 120.0),
    (50, 100.0),
    (100, 80.0),
    (250, 70.0),
    (500, 60.0),
    (1000, 50.0),
    (2000, 45.0),
    (3000, 40.0),
    (4000, 35.0),
    (5000, 30.0),
    (6000, 25.0),
)

# Tramo lineal 6.000 t - 63.000 t
LINEAR_START_TONS = 6000
LINEAR_BASE_FEE = 23.8
LINEAR_STEP = 0.2

# Tramo de cola desde 63.000 t
TAIL_START_TONS = 63000
TAIL_BASE_FEE = 12.5
TAIL_STEP = 0.1
MIN_FEE = 1.0

TON_UNITS = frozenset(['toneladas', 'toneladas (ton)', 'ton', 'tons', 't'])


def management_fee_per_kg(kg: Any) -> float:
    """
    Comisión de gestión en COP por kilogramo.

    Volúmenes nulos, negativos o inválidos caen en el tramo más pequeño
    (la tarifa más alta). Nunca lanza excepción.

    Args:
        kg: Volumen total en kilogramos

    Returns:
        Tarifa redondeada a 2 decimales
    """
    try:
        tons = float(kg) / 1000
    except (TypeError, ValueError):
        tons = 0.0
    if math.isnan(tons) or tons < 0:
        tons = 0.0
    elif math.isinf(tons):
        return MIN_FEE

    for upper, fee in FEE_BRACKETS:
        if tons < upper:
            return fee

    if tons < TAIL_START_TONS:
        steps = math.floor((tons - LINEAR_START_TONS) / 1000)
        return round(LINEAR_BASE_FEE - steps * LINEAR_STEP, 2)

    steps = math.floor((tons - TAIL_START_TONS) / 1000)
    return max(round(TAIL_BASE_FEE - steps * TAIL_STEP, 2), MIN_FEE)


def penalty_fee_per_kg(kg: Any) -> float:
    """Penalidad por kilogramo: misma tabla que la comisión."""
    return management_fee_per_kg(kg)


def to_kilograms(quantity: Any, unit: Optional[str]) -> float:
    """Normaliza una cantidad a kilogramos. Unidades desconocidas se toman como kg."""
    try:
        value = float(quantity or 0)
    except (TypeError, ValueError):
        return 0.0
    if unit and unit.strip().lower() in TON_UNITS:
        return value * 1000
    return value


def proposal_volume_kg(proposal: Any) -> float:
    """Volumen total en kg de un Requerimiento o una Publicación."""
    # Requirement expone quantity/unit como alias de total_volume/unidad
    return to_kilograms(getattr(proposal, 'quantity', 0), getattr(proposal, 'unit', None))


def resolve_penalty_fee(proposal: Any) -> float:
    """
    Penalidad a firmar por la contraparte.

    Usa la comisión guardada en la propuesta tal cual. Sólo para registros
    legacy sin comisión guardada se recalcula desde el volumen.
    """
    stored = getattr(proposal, 'management_fee_per_kg', None)
    if stored is not None and stored > 0:
        return stored

    fee = penalty_fee_per_kg(proposal_volume_kg(proposal))
    logger.warning(
        "[TARIFA] Propuesta %s sin comisión guardada, recalculada (v%s): %s COP/kg",
        getattr(proposal, 'id', '?'), FEE_SCHEDULE_VERSION, fee
    )
    return fee


def management_fee_total(quantity: Any, unit: Optional[str], fee_per_kg: float) -> float:
    """Total en COP de la comisión para una cantidad."""
    return round(to_kilograms(quantity, unit) * fee_per_kg, 2)
