from __future__ import annotations

from enum import Enum
from typing import Optional


class Phase(str, Enum):
    MDL = "mdl"
    RIG = "rig"
    BLD = "bld"
    DSN = "dsn"
    LDV = "ldv"


PHASE_ORDER: tuple[Phase, ...] = (Phase.MDL, Phase.RIG, Phase.BLD, Phase.DSN, Phase.LDV)
PHASE_VALUES = {phase.value for phase in PHASE_ORDER}
NO_PHASE_TOKENS = {"", "none", "all"}


def parse_phase(value: Optional[str]) -> Optional[Phase]:
    """Returns the matching phase, or None for blank, "none" and unknown tokens."""
    token = str(value or "").strip().lower()
    if token in NO_PHASE_TOKENS or token not in PHASE_VALUES:
        return None
    return Phase(token)
