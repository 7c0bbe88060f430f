"""Compliance service: the single entry point to the engine.

Orchestrates every subsystem:
- Access control (grant / revoke roles)
- Probability model (priors and CPTs, operator-only)
- Shipment registry and escrow custody
- Settlement (inference, threshold, payout, receipts)

Every public operation runs under one lock, so all operations form a
single total order. Each mutating operation follows the same three steps:
1. Validate everything (authorisation, ranges, lifecycle) with no writes.
2. Append the audit event. If that fails, nothing has changed.
3. Apply the event to in-memory state.

Step 3 is the same code path used to rebuild state from an existing log,
so a service constructed over a persisted log is identical to the one
that wrote it.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from coldchain.access.roles import Role, RoleRegistry
from coldchain.errors import (
    AuditTrailError,
    AuthorizationError,
    ColdchainError,
    ComplianceRejection,
    InternalInvariantError,
    ModelNotConfiguredError,
    ValidationError,
)
from coldchain.inference.engine import Evidence, InferenceTrace, infer_model
from coldchain.models.network import (
    COMPLIANCE_THRESHOLD,
    ConditionalTable,
    NetworkModel,
    Priors,
    check_node_id,
)
from coldchain.models.shipment import Shipment
from coldchain.persistence.event_log import EventKind, EventLog, EventRecord
from coldchain.registry.funds import FundsLedger
from coldchain.registry.shipments import ShipmentRegistry
from coldchain.settlement.engine import SettlementEngine
from coldchain.settlement.receipt import SettlementReceipt

logger = logging.getLogger(__name__)


class ComplianceService:
    """Unified facade over the compliance engine.

    Usage:
        service = ComplianceService(admin="deployer")
        service.grant_role("deployer", Role.SENSOR, "sensor_1")
        service.grant_role("deployer", Role.SENDER, "shipper_1")
        service.set_priors("deployer", 90, 90)
        service.set_cpt("deployer", 1, 5, 5, 98, 98)
        ...
        shipment_id = service.create_shipment("shipper_1", "carrier_1", 1_000)
        service.submit_evidence("sensor_1", shipment_id, 1, True)
        ...
        receipt = service.validate_and_pay("carrier_1", shipment_id)

    Persistence (optional):
        service = ComplianceService(admin, event_log=EventLog(path))
        # State is rebuilt from the log on construction.
    """

    def __init__(
        self,
        admin: str,
        event_log: Optional[EventLog] = None,
        threshold: int = COMPLIANCE_THRESHOLD,
    ) -> None:
        self._lock = threading.RLock()
        self._roles = RoleRegistry()
        self._model = NetworkModel()
        self._shipments = ShipmentRegistry()
        self._funds = FundsLedger()
        self._settlement = SettlementEngine(threshold)
        self._receipts: dict[int, SettlementReceipt] = {}
        self._event_log = event_log if event_log is not None else EventLog()
        self._event_counter = 0

        if self._event_log.count:
            self._replay()
            logger.info(
                "Rebuilt state from %d events (%d shipments)",
                self._event_log.count, self._shipments.count,
            )
        else:
            # The deployer administers roles and configures the model.
            admin = admin.strip() if isinstance(admin, str) else ""
            if not admin:
                raise ValidationError("Admin principal must be non-blank")
            for role in (Role.ADMIN, Role.OPERATOR):
                self._commit(
                    EventKind.ROLE_GRANTED, admin,
                    {"role": role.value, "principal": admin},
                )

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def has_role(self, principal: str, role: Role) -> bool:
        with self._lock:
            return self._roles.has_role(principal, role)

    def roles_of(self, principal: str) -> frozenset[Role]:
        with self._lock:
            return self._roles.roles_of(principal)

    def grant_role(self, caller: str, role: Role, principal: str) -> bool:
        """Grant role to principal. Returns False if already held."""
        with self._lock:
            self._authorize(caller, Role.ADMIN, "grant_role")
            if not isinstance(principal, str) or not principal.strip():
                raise ValidationError("Cannot grant a role to a blank principal")
            principal = principal.strip()
            if self._roles.has_role(principal, role):
                return False
            self._commit(
                EventKind.ROLE_GRANTED, caller,
                {"role": role.value, "principal": principal},
            )
            logger.info("Role %s granted to %s by %s", role.value, principal, caller)
            return True

    def revoke_role(self, caller: str, role: Role, principal: str) -> bool:
        """Revoke role from principal. Returns False if it was not held."""
        with self._lock:
            self._authorize(caller, Role.ADMIN, "revoke_role")
            if not isinstance(principal, str) or not principal.strip():
                raise ValidationError("Cannot revoke a role from a blank principal")
            principal = principal.strip()
            if not self._roles.has_role(principal, role):
                return False
            self._commit(
                EventKind.ROLE_REVOKED, caller,
                {"role": role.value, "principal": principal},
            )
            logger.info("Role %s revoked from %s by %s", role.value, principal, caller)
            return True

    # ------------------------------------------------------------------
    # Probability model
    # ------------------------------------------------------------------

    def model(self) -> NetworkModel:
        with self._lock:
            return self._model

    def set_priors(self, caller: str, prior_f1: int, prior_f2: int) -> NetworkModel:
        """Overwrite the global prior pair. Applies to every open shipment."""
        with self._lock:
            self._authorize(caller, Role.OPERATOR, "set_priors")
            priors = Priors(prior_f1, prior_f2)
            self._commit(
                EventKind.PRIORS_SET, caller,
                {"prior_f1": priors.prior_f1, "prior_f2": priors.prior_f2},
            )
            logger.info(
                "Priors set to (%d, %d), model revision %d",
                prior_f1, prior_f2, self._model.revision,
            )
            return self._model

    def set_cpt(
        self,
        caller: str,
        node_id: int,
        p_ff: int,
        p_ft: int,
        p_tf: int,
        p_tt: int,
    ) -> NetworkModel:
        """Overwrite the CPT of one evidence node."""
        with self._lock:
            self._authorize(caller, Role.OPERATOR, "set_cpt")
            check_node_id(node_id)
            table = ConditionalTable(p_ff, p_ft, p_tf, p_tt)
            self._commit(
                EventKind.CPT_SET, caller,
                {"node_id": node_id, "cpt": list(table.as_tuple())},
            )
            logger.info(
                "CPT for node %d set to %s, model revision %d",
                node_id, table.as_tuple(), self._model.revision,
            )
            return self._model

    def infer(self, evidence: Evidence) -> InferenceTrace:
        """Run inference against the current model without touching state."""
        with self._lock:
            model = self._model
        missing = model.missing_parameters()
        if missing:
            raise ModelNotConfiguredError(missing)
        return infer_model(model, evidence)

    # ------------------------------------------------------------------
    # Shipments
    # ------------------------------------------------------------------

    def create_shipment(self, caller: str, carrier: str, amount: int) -> int:
        """Create a shipment escrowing amount from caller. Returns its id."""
        with self._lock:
            self._authorize(caller, Role.SENDER, "create_shipment")
            self._shipments.validate_new(caller, carrier, amount)
            shipment_id = self._shipments.next_id
            self._commit(
                EventKind.SHIPMENT_CREATED, caller,
                {
                    "shipment_id": shipment_id,
                    "sender": caller.strip(),
                    "carrier": carrier.strip(),
                    "amount": amount,
                },
            )
            logger.info(
                "Shipment %d created by %s for carrier %s, escrow %d",
                shipment_id, caller, carrier, amount,
            )
            return shipment_id

    def submit_evidence(
        self,
        caller: str,
        shipment_id: int,
        node_id: int,
        value: bool,
    ) -> None:
        """Record one sensor reading, overwriting any earlier one."""
        with self._lock:
            self._authorize(caller, Role.SENSOR, "submit_evidence")
            shipment = self._shipments.check_evidence(shipment_id, node_id, value)
            previous = shipment.evidence.get(node_id)
            self._commit(
                EventKind.EVIDENCE_SUBMITTED, caller,
                {
                    "shipment_id": shipment_id,
                    "node_id": node_id,
                    "value": value,
                    "previous": previous,
                },
            )
            logger.info(
                "Evidence E%d=%s for shipment %d from %s%s",
                node_id, value, shipment_id, caller,
                "" if previous is None else f" (overwrote {previous})",
            )

    def get_shipment(self, shipment_id: int) -> Optional[Shipment]:
        with self._lock:
            return self._shipments.find(shipment_id)

    def shipments(self) -> list[Shipment]:
        with self._lock:
            return self._shipments.shipments()

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def validate_and_pay(self, caller: str, shipment_id: int) -> SettlementReceipt:
        """Settle a shipment: pay its escrow to the carrier if compliant.

        Raises, in order of the checks:
            ValidationError: unknown shipment, or already settled.
            AuthorizationError: caller is not the shipment's carrier.
            IncompleteDataError: fewer than five evidence slots filled.
            ModelNotConfiguredError: a prior or CPT was never set.
            InternalInvariantError: the evidence is impossible under the model.
            ComplianceRejection: a posterior is below the threshold.
        """
        with self._lock:
            shipment = self._shipments.get(shipment_id)
            if caller != shipment.carrier:
                logger.warning(
                    "Settlement of shipment %d refused: %s is not the carrier",
                    shipment_id, caller,
                )
                raise AuthorizationError(caller, f"carrier of shipment {shipment_id}")

            assessment = self._settlement.assess(shipment, self._model)
            posterior = assessment.trace.posterior

            if not assessment.passed and shipment.rejected_utc is not None:
                # Only the first rejection is recorded; it locked the evidence
                logger.warning(
                    "Shipment %d rejected again: P(F1)=%d P(F2)=%d below %d",
                    shipment_id, posterior.f1, posterior.f2, assessment.threshold,
                    extra={"fields": {"shipment_id": shipment_id}},
                )
                raise ComplianceRejection(
                    shipment_id, posterior.f1, posterior.f2, assessment.threshold,
                )

            if not assessment.passed:
                self._commit(
                    EventKind.SETTLEMENT_REJECTED, caller,
                    {
                        "shipment_id": shipment_id,
                        "posterior_f1": posterior.f1,
                        "posterior_f2": posterior.f2,
                        "threshold": assessment.threshold,
                        "model_revision": assessment.model_revision,
                    },
                )
                logger.warning(
                    "Shipment %d rejected: P(F1)=%d P(F2)=%d below %d",
                    shipment_id, posterior.f1, posterior.f2, assessment.threshold,
                    extra={"fields": {"shipment_id": shipment_id}},
                )
                raise ComplianceRejection(
                    shipment_id, posterior.f1, posterior.f2, assessment.threshold,
                )

            held = self._funds.escrow_held(shipment_id)
            if held != shipment.amount:
                raise InternalInvariantError(
                    f"Escrow for shipment {shipment_id} is {held}, "
                    f"expected {shipment.amount}"
                )

            now = datetime.now(timezone.utc).replace(microsecond=0)
            receipt = self._settlement.build_receipt(
                shipment, self._model, assessment, now=now,
            )
            self._commit(
                EventKind.SHIPMENT_SETTLED, caller,
                {"shipment_id": shipment_id, "receipt": receipt.to_dict()},
                now=now,
            )
            logger.info(
                "Shipment %d settled: %d paid to %s (P(F1)=%d P(F2)=%d)",
                shipment_id, shipment.amount, shipment.carrier,
                posterior.f1, posterior.f2,
                extra={"fields": {"receipt_hash": receipt.receipt_hash}},
            )
            return receipt

    def get_receipt(self, shipment_id: int) -> Optional[SettlementReceipt]:
        with self._lock:
            return self._receipts.get(shipment_id)

    # ------------------------------------------------------------------
    # Funds and status
    # ------------------------------------------------------------------

    def balance_of(self, principal: str) -> int:
        with self._lock:
            return self._funds.balance_of(principal)

    def escrow_held(self, shipment_id: int) -> int:
        with self._lock:
            return self._funds.escrow_held(shipment_id)

    @property
    def threshold(self) -> int:
        return self._settlement.threshold

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def status(self) -> dict[str, Any]:
        """Return a system-wide status summary."""
        with self._lock:
            return {
                "model": {
                    **self._model.to_dict(),
                    "missing": self._model.missing_parameters(),
                },
                "threshold": self._settlement.threshold,
                "roles": {
                    role.value: self._roles.principals_with(role) for role in Role
                },
                "shipments": {
                    "total": self._shipments.count,
                    "by_state": self._shipments.count_by_state(),
                },
                "funds": {
                    "escrowed": self._funds.total_escrowed,
                    "paid_out": self._funds.total_paid_out,
                },
                "events": self._event_log.count,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _authorize(self, caller: str, role: Role, operation: str) -> None:
        try:
            self._roles.require(caller, role)
        except AuthorizationError:
            logger.warning("%s refused: %s lacks role %s", operation, caller, role.value)
            raise

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        return f"EVT-{self._event_counter + 1:08d}"

    def _commit(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> EventRecord:
        """Durably record an event, then apply it.

        Fail-closed: if the append fails, in-memory state is untouched.
        """
        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor_id=actor,
            payload=payload,
            timestamp_utc=now,
        )
        try:
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            logger.error("Audit trail failure for %s: %s", kind.value, e)
            raise AuditTrailError(f"Event log failure: {e}", cause=e) from e
        self._event_counter += 1
        self._apply(event)
        return event

    def _replay(self) -> None:
        for event in self._event_log.events():
            try:
                self._apply(event)
            except (ColdchainError, KeyError, TypeError) as e:
                raise AuditTrailError(
                    f"Cannot replay event {event.event_id} ({event.event_kind.value}): {e}",
                    cause=e,
                ) from e
            self._event_counter += 1

    def _apply(self, event: EventRecord) -> None:
        """Apply a recorded event to in-memory state."""
        p = event.payload
        kind = event.event_kind

        if kind == EventKind.ROLE_GRANTED:
            self._roles.assign(Role(p["role"]), p["principal"])

        elif kind == EventKind.ROLE_REVOKED:
            self._roles.unassign(Role(p["role"]), p["principal"])

        elif kind == EventKind.PRIORS_SET:
            self._model = self._model.with_priors(Priors(p["prior_f1"], p["prior_f2"]))

        elif kind == EventKind.CPT_SET:
            self._model = self._model.with_cpt(p["node_id"], ConditionalTable(*p["cpt"]))

        elif kind == EventKind.SHIPMENT_CREATED:
            shipment = self._shipments.create(
                p["sender"], p["carrier"], p["amount"],
                shipment_id=p["shipment_id"], now=event.timestamp,
            )
            self._funds.hold(shipment.shipment_id, shipment.sender, shipment.amount)

        elif kind == EventKind.EVIDENCE_SUBMITTED:
            self._shipments.record_evidence(p["shipment_id"], p["node_id"], p["value"])

        elif kind == EventKind.SETTLEMENT_REJECTED:
            self._shipments.mark_rejected(p["shipment_id"], now=event.timestamp)

        elif kind == EventKind.SHIPMENT_SETTLED:
            receipt = SettlementReceipt.from_dict(p["receipt"])
            self._shipments.require_open(receipt.shipment_id)
            self._funds.release(receipt.shipment_id, receipt.carrier, now=event.timestamp)
            self._shipments.mark_settled(receipt.shipment_id, now=event.timestamp)
            self._receipts[receipt.shipment_id] = receipt
