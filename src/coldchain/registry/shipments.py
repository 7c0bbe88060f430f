"""Shipment registry: sequential shipment records and their evidence slots.

Before a shipment exists the sender must attach the full escrow amount;
the registry only records it. Custody of the funds is the funds ledger's
job (coldchain.registry.funds).

The registry is a pure state container. No authorisation, no events:
the service layer checks roles and records the audit trail before it
calls any mutator here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from coldchain.errors import ValidationError
from coldchain.models.network import check_node_id
from coldchain.models.shipment import Shipment, ShipmentState


class ShipmentRegistry:
    """Holds every shipment, keyed by a sequential id starting at 1.

    Usage:
        registry = ShipmentRegistry()
        shipment = registry.create("sender_1", "carrier_1", 1_000)
        registry.record_evidence(shipment.shipment_id, 1, True)
        registry.mark_settled(shipment.shipment_id)
    """

    def __init__(self) -> None:
        self._shipments: Dict[int, Shipment] = {}
        self._next_id = 1

    @property
    def next_id(self) -> int:
        return self._next_id

    def validate_new(self, sender: str, carrier: str, amount: int) -> None:
        """Raise ValidationError if create() would reject these arguments."""
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"Escrow amount must be an integer, got {amount!r}")
        if amount <= 0:
            raise ValidationError("Escrow amount must be positive")
        if not isinstance(carrier, str) or not carrier.strip():
            raise ValidationError("Carrier must be a non-blank principal")
        if not isinstance(sender, str) or not sender.strip():
            raise ValidationError("Sender must be a non-blank principal")

    def create(
        self,
        sender: str,
        carrier: str,
        amount: int,
        shipment_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Shipment:
        """Create a new OPEN shipment with empty evidence.

        Args:
            sender: The principal escrowing the funds.
            carrier: The principal to be paid on successful settlement.
            amount: Escrowed amount in the smallest unit (> 0).
            shipment_id: Expected id, used when replaying the audit log.
                Must equal next_id if given.
            now: Creation time (defaults to UTC now).
        """
        self.validate_new(sender, carrier, amount)
        if shipment_id is not None and shipment_id != self._next_id:
            raise ValidationError(
                f"Shipment ids are sequential: expected {self._next_id}, "
                f"got {shipment_id}"
            )
        if now is None:
            now = datetime.now(timezone.utc)

        shipment = Shipment(
            shipment_id=self._next_id,
            sender=sender.strip(),
            carrier=carrier.strip(),
            amount=amount,
            created_utc=now,
        )
        self._shipments[shipment.shipment_id] = shipment
        self._next_id += 1
        return shipment

    def require_open(self, shipment_id: int) -> Shipment:
        """Return the shipment if it exists and is still OPEN."""
        shipment = self.get(shipment_id)
        if shipment.state != ShipmentState.OPEN:
            raise ValidationError(
                f"Shipment {shipment_id} is already {shipment.state.value}"
            )
        return shipment

    def check_evidence(self, shipment_id: int, node_id: int, value: bool) -> Shipment:
        """Raise unless record_evidence() would accept this submission."""
        check_node_id(node_id)
        if not isinstance(value, bool):
            raise ValidationError(f"Evidence value must be a bool, got {value!r}")
        shipment = self.require_open(shipment_id)
        if shipment.evidence_locked:
            raise ValidationError(
                f"Evidence for shipment {shipment_id} is locked after a compliance rejection"
            )
        return shipment

    def record_evidence(
        self,
        shipment_id: int,
        node_id: int,
        value: bool,
    ) -> Optional[bool]:
        """Write one evidence slot, overwriting any earlier value.

        Returns the previous value, or None if the slot was empty.
        """
        shipment = self.check_evidence(shipment_id, node_id, value)
        previous = shipment.evidence.get(node_id)
        shipment.evidence[node_id] = value
        return previous

    def mark_settled(
        self,
        shipment_id: int,
        now: Optional[datetime] = None,
    ) -> Shipment:
        """Transitions: OPEN → SETTLED"""
        shipment = self.get(shipment_id)
        if now is None:
            now = datetime.now(timezone.utc)
        shipment.transition_to(ShipmentState.SETTLED)
        shipment.settled_utc = now
        return shipment

    def mark_rejected(
        self,
        shipment_id: int,
        now: Optional[datetime] = None,
    ) -> Shipment:
        """Lock evidence after a failed compliance check. State stays OPEN."""
        shipment = self.require_open(shipment_id)
        if shipment.rejected_utc is None:
            shipment.rejected_utc = now or datetime.now(timezone.utc)
        return shipment

    def get(self, shipment_id: int) -> Shipment:
        """Lookup with a clear error on unknown ids."""
        shipment = self.find(shipment_id)
        if shipment is None:
            raise ValidationError(f"Unknown shipment: {shipment_id}")
        return shipment

    def find(self, shipment_id: int) -> Optional[Shipment]:
        if isinstance(shipment_id, bool) or not isinstance(shipment_id, int):
            return None
        return self._shipments.get(shipment_id)

    def shipments(self) -> list[Shipment]:
        return [self._shipments[k] for k in sorted(self._shipments)]

    def count_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for s in self._shipments.values():
            counts[s.state.value] = counts.get(s.state.value, 0) + 1
        return counts

    @property
    def count(self) -> int:
        return len(self._shipments)
