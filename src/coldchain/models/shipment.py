"""Shipment models: escrow record, evidence slots and lifecycle state.

Amounts are integers in the smallest transferable unit. No floats.

State machine:
    OPEN → SETTLED    (compliance passed, escrow paid to carrier)

SETTLED is terminal. A shipment whose compliance check fails stays OPEN
for good: its evidence is locked and there is no amendment path.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from coldchain.errors import ValidationError
from coldchain.models.network import NODE_IDS


class ShipmentState(str, enum.Enum):
    """Lifecycle state of a shipment."""
    OPEN = "open"
    SETTLED = "settled"


SHIPMENT_TRANSITIONS: Dict[ShipmentState, frozenset] = {
    ShipmentState.OPEN: frozenset({ShipmentState.SETTLED}),
    ShipmentState.SETTLED: frozenset(),
}


@dataclass
class Shipment:
    """A shipment with escrowed funds and its five evidence slots.

    Mutable while OPEN: evidence may be written and overwritten.
    All transitions are validated against SHIPMENT_TRANSITIONS.
    """
    shipment_id: int
    sender: str
    carrier: str
    amount: int
    state: ShipmentState = ShipmentState.OPEN
    evidence: Dict[int, bool] = field(default_factory=dict)
    created_utc: Optional[datetime] = None
    settled_utc: Optional[datetime] = None
    rejected_utc: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.state == ShipmentState.OPEN

    @property
    def evidence_locked(self) -> bool:
        """Evidence is immutable once settled or once compliance was rejected."""
        return self.state != ShipmentState.OPEN or self.rejected_utc is not None

    def missing_evidence(self) -> list[int]:
        return [n for n in NODE_IDS if n not in self.evidence]

    def evidence_vector(self) -> tuple[bool, ...]:
        """Observed values ordered by node id. Requires every slot filled."""
        return tuple(self.evidence[n] for n in NODE_IDS)

    def transition_to(self, new_state: ShipmentState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = SHIPMENT_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValidationError(
                f"Invalid shipment transition: {self.state.value} -> {new_state.value} "
                f"(shipment {self.shipment_id})"
            )
        self.state = new_state

    def to_dict(self) -> dict:
        return {
            "shipment_id": self.shipment_id,
            "sender": self.sender,
            "carrier": self.carrier,
            "amount": self.amount,
            "state": self.state.value,
            "evidence": {str(k): v for k, v in sorted(self.evidence.items())},
            "missing_evidence": self.missing_evidence(),
            "created_utc": self.created_utc.isoformat() if self.created_utc else None,
            "settled_utc": self.settled_utc.isoformat() if self.settled_utc else None,
            "rejected_utc": self.rejected_utc.isoformat() if self.rejected_utc else None,
        }
