"""Funds ledger: custody of escrowed amounts and carrier payouts.

Funds enter the ledger attached to shipment creation and leave it
exactly once, when a settlement releases them to the carrier. There is
no refund path: an escrow whose shipment never settles is held
indefinitely.

Amounts are integers in the smallest transferable unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from coldchain.errors import ValidationError


@dataclass(frozen=True)
class Transfer:
    """A completed payout from escrow to a beneficiary."""
    shipment_id: int
    beneficiary: str
    amount: int
    timestamp_utc: datetime


class FundsLedger:
    """In-memory escrow custody and payout balances.

    Invariant: total_escrowed + sum(balances) == total deposited.
    """

    def __init__(self) -> None:
        self._escrow: Dict[int, int] = {}
        self._depositors: Dict[int, str] = {}
        self._balances: Dict[str, int] = {}
        self._transfers: List[Transfer] = []
        self._total_deposited = 0

    def hold(self, shipment_id: int, depositor: str, amount: int) -> None:
        """Take custody of a shipment's escrow."""
        if shipment_id in self._escrow or shipment_id in self._depositors:
            raise ValidationError(f"Escrow already recorded for shipment {shipment_id}")
        if amount <= 0:
            raise ValidationError("Escrow amount must be positive")
        self._escrow[shipment_id] = amount
        self._depositors[shipment_id] = depositor
        self._total_deposited += amount

    def release(
        self,
        shipment_id: int,
        beneficiary: str,
        now: Optional[datetime] = None,
    ) -> Transfer:
        """Pay a shipment's full escrow to beneficiary. One-shot."""
        amount = self._escrow.get(shipment_id)
        if amount is None:
            raise ValidationError(f"No escrow held for shipment {shipment_id}")
        if now is None:
            now = datetime.now(timezone.utc)
        del self._escrow[shipment_id]
        self._balances[beneficiary] = self._balances.get(beneficiary, 0) + amount
        transfer = Transfer(
            shipment_id=shipment_id,
            beneficiary=beneficiary,
            amount=amount,
            timestamp_utc=now,
        )
        self._transfers.append(transfer)
        return transfer

    def escrow_held(self, shipment_id: int) -> int:
        return self._escrow.get(shipment_id, 0)

    def balance_of(self, principal: str) -> int:
        return self._balances.get(principal, 0)

    def transfers(self, shipment_id: Optional[int] = None) -> List[Transfer]:
        if shipment_id is None:
            return list(self._transfers)
        return [t for t in self._transfers if t.shipment_id == shipment_id]

    @property
    def total_escrowed(self) -> int:
        return sum(self._escrow.values())

    @property
    def total_paid_out(self) -> int:
        return sum(t.amount for t in self._transfers)

    @property
    def total_deposited(self) -> int:
        return self._total_deposited
