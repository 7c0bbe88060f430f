"""Settlement engine: turns posteriors into a pay / reject decision.

Checks run in a fixed order, each with its own failure:
1. Shipment is OPEN (ValidationError).
2. All five evidence slots are filled (IncompleteDataError).
3. The model is fully configured (ModelNotConfiguredError).
4. Exact inference on the current model and the shipment's evidence.
5. Both posteriors >= threshold, else the assessment is marked failed.

The engine decides but never mutates. Paying the carrier and closing the
shipment are applied by the service once the audit event is recorded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from coldchain.errors import (
    IncompleteDataError,
    ModelNotConfiguredError,
    ValidationError,
)
from coldchain.inference.engine import InferenceTrace, infer_model
from coldchain.models.network import COMPLIANCE_THRESHOLD, SCALE, NetworkModel
from coldchain.models.shipment import Shipment, ShipmentState
from coldchain.settlement.receipt import SettlementReceipt


@dataclass(frozen=True)
class ComplianceAssessment:
    """Outcome of running the compliance checks against one shipment."""
    shipment_id: int
    evidence: tuple[bool, ...]
    trace: InferenceTrace
    threshold: int
    model_revision: int

    @property
    def passed(self) -> bool:
        p = self.trace.posterior
        return p.f1 >= self.threshold and p.f2 >= self.threshold


class SettlementEngine:
    """Applies the compliance threshold to inferred posteriors."""

    def __init__(self, threshold: int = COMPLIANCE_THRESHOLD) -> None:
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise ValidationError(f"Threshold must be an integer, got {threshold!r}")
        if not 0 <= threshold <= SCALE:
            raise ValidationError(f"Threshold must be in [0, {SCALE}], got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    def assess(self, shipment: Shipment, model: NetworkModel) -> ComplianceAssessment:
        if shipment.state != ShipmentState.OPEN:
            raise ValidationError(
                f"Shipment {shipment.shipment_id} is already {shipment.state.value}"
            )

        missing_nodes = shipment.missing_evidence()
        if missing_nodes:
            raise IncompleteDataError(shipment.shipment_id, missing_nodes)

        missing_params = model.missing_parameters()
        if missing_params:
            raise ModelNotConfiguredError(missing_params)

        evidence = shipment.evidence_vector()
        return ComplianceAssessment(
            shipment_id=shipment.shipment_id,
            evidence=evidence,
            trace=infer_model(model, evidence),
            threshold=self._threshold,
            model_revision=model.revision,
        )

    def build_receipt(
        self,
        shipment: Shipment,
        model: NetworkModel,
        assessment: ComplianceAssessment,
        now: Optional[datetime] = None,
    ) -> SettlementReceipt:
        """Receipt for a passed assessment. Raises if it did not pass."""
        if not assessment.passed:
            raise ValidationError(
                f"Cannot issue a receipt for shipment {shipment.shipment_id}: "
                f"compliance not met"
            )
        if now is None:
            now = datetime.now(timezone.utc)
        priors = model.priors
        if priors is None:
            raise ModelNotConfiguredError(["priors"])
        return SettlementReceipt.create(
            shipment_id=shipment.shipment_id,
            sender=shipment.sender,
            carrier=shipment.carrier,
            amount=shipment.amount,
            evidence=assessment.evidence,
            priors=(priors.prior_f1, priors.prior_f2),
            cpts={k: v.as_tuple() for k, v in sorted(model.cpts.items())},
            joints=assessment.trace.joints,
            normalizer=assessment.trace.normalizer,
            posterior_f1=assessment.trace.posterior.f1,
            posterior_f2=assessment.trace.posterior.f2,
            threshold=assessment.threshold,
            model_revision=assessment.model_revision,
            settled_utc=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
