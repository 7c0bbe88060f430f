"""Settlement receipts: a self-contained, re-derivable record of a payout.

A receipt embeds the exact model parameters, the evidence vector and the
integer joints behind the decision. Anyone holding a receipt can rerun
the inference and recompute the hash without access to the engine's
state; verify_receipt() does exactly that.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from coldchain.crypto.anchor import canonical_digest
from coldchain.errors import InternalInvariantError, ValidationError
from coldchain.inference.engine import explain
from coldchain.models.network import NODE_IDS, ConditionalTable, Priors


@dataclass(frozen=True)
class SettlementReceipt:
    """Proof that a shipment settled, and why."""
    shipment_id: int
    sender: str
    carrier: str
    amount: int
    evidence: tuple[bool, ...]
    priors: tuple[int, int]
    cpts: dict[int, tuple[int, int, int, int]]
    joints: tuple[int, int, int, int]
    normalizer: int
    posterior_f1: int
    posterior_f2: int
    threshold: int
    model_revision: int
    settled_utc: str
    receipt_hash: str

    def body(self) -> dict[str, Any]:
        """Canonical content covered by receipt_hash."""
        return {
            "shipment_id": self.shipment_id,
            "sender": self.sender,
            "carrier": self.carrier,
            "amount": self.amount,
            "evidence": list(self.evidence),
            "priors": list(self.priors),
            "cpts": {str(k): list(v) for k, v in sorted(self.cpts.items())},
            "joints": list(self.joints),
            "normalizer": self.normalizer,
            "posterior_f1": self.posterior_f1,
            "posterior_f2": self.posterior_f2,
            "threshold": self.threshold,
            "model_revision": self.model_revision,
            "settled_utc": self.settled_utc,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.body()
        data["receipt_hash"] = self.receipt_hash
        return data

    @staticmethod
    def create(**fields: Any) -> SettlementReceipt:
        """Build a receipt and compute its hash."""
        draft = SettlementReceipt(receipt_hash="", **fields)
        return SettlementReceipt(
            receipt_hash=f"sha256:{canonical_digest(draft.body())}", **fields,
        )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SettlementReceipt:
        try:
            return SettlementReceipt(
                shipment_id=int(data["shipment_id"]),
                sender=data["sender"],
                carrier=data["carrier"],
                amount=int(data["amount"]),
                evidence=tuple(bool(v) for v in data["evidence"]),
                priors=(int(data["priors"][0]), int(data["priors"][1])),
                cpts={
                    int(k): (int(v[0]), int(v[1]), int(v[2]), int(v[3]))
                    for k, v in data["cpts"].items()
                },
                joints=tuple(int(j) for j in data["joints"]),  # type: ignore[arg-type]
                normalizer=int(data["normalizer"]),
                posterior_f1=int(data["posterior_f1"]),
                posterior_f2=int(data["posterior_f2"]),
                threshold=int(data["threshold"]),
                model_revision=int(data["model_revision"]),
                settled_utc=data["settled_utc"],
                receipt_hash=data["receipt_hash"],
            )
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed settlement receipt: {e}") from e


def verify_receipt(receipt: SettlementReceipt) -> list[str]:
    """Re-derive a receipt from its own contents. Returns list of errors."""
    errors: list[str] = []

    expected_hash = f"sha256:{canonical_digest(receipt.body())}"
    if receipt.receipt_hash != expected_hash:
        errors.append(
            f"receipt_hash mismatch: stored {receipt.receipt_hash}, "
            f"computed {expected_hash}"
        )

    if sorted(receipt.cpts) != list(NODE_IDS):
        errors.append(f"receipt must carry CPTs for nodes {list(NODE_IDS)}")
        return errors

    try:
        trace = explain(
            Priors(*receipt.priors),
            {k: ConditionalTable(*v) for k, v in receipt.cpts.items()},
            list(receipt.evidence),
        )
    except (ValueError, InternalInvariantError) as e:
        errors.append(f"receipt model or evidence invalid: {e}")
        return errors

    if trace.joints != tuple(receipt.joints) or trace.normalizer != receipt.normalizer:
        errors.append("recorded joints do not match re-derived joints")
    if (trace.posterior.f1, trace.posterior.f2) != (
        receipt.posterior_f1, receipt.posterior_f2,
    ):
        errors.append(
            f"recorded posteriors ({receipt.posterior_f1}, {receipt.posterior_f2}) "
            f"!= re-derived ({trace.posterior.f1}, {trace.posterior.f2})"
        )
    if min(trace.posterior) < receipt.threshold:
        errors.append("re-derived posteriors do not clear the recorded threshold")
    return errors
