"""Domain enumerations.

Values are the wire strings exchanged with collaborators and must not change.
"""

from enum import Enum
from typing import FrozenSet


class ClaimStatus(str, Enum):
    SUBMITTED = "enviado"
    IN_REVIEW = "em_analise"
    APPROVED = "valido"
    REJECTED = "invalido"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class Origin(str, Enum):
    SELF = "proprio"
    SPOUSE = "conjuge"
    CHILDREN = "filhos"


class Classification(str, Enum):
    FIXED = "fixo"
    VARIABLE = "variavel"


class PeriodStatus(str, Enum):
    OPEN = "aberto"
    CLOSED = "fechado"


class Role(str, Enum):
    APPROVER = "approver"
    ADMIN = "admin"


TERMINAL_STATUSES: FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.APPROVED, ClaimStatus.REJECTED}
)
PENDING_STATUSES: FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.SUBMITTED, ClaimStatus.IN_REVIEW}
)
