"""Tests for validate_and_pay: proves payment is gated on the posteriors."""

import threading

import pytest

from coldchain.access.roles import Role
from coldchain.errors import (
    AuthorizationError,
    ComplianceRejection,
    IncompleteDataError,
    InternalInvariantError,
    ModelNotConfiguredError,
    ValidationError,
)
from coldchain.models.shipment import ShipmentState
from coldchain.persistence.event_log import EventKind
from coldchain.service import ComplianceService
from coldchain.settlement.engine import SettlementEngine
from coldchain.settlement.receipt import verify_receipt


ADMIN = "deployer"
SENSOR = "sensor_1"
SENDER = "shipper_1"
CARRIER = "carrier_1"
AMOUNT = 1_000

COMPLIANT = (True, True, False, False, True)
LIGHT_TRIPPED = (True, True, False, True, True)
BROKEN_SEAL = (True, False, False, True, True)
TEMPERATURE_EXCURSION = (False, True, False, False, True)

CPTS = {
    1: (5, 5, 98, 98),
    2: (1, 99, 1, 99),
    3: (70, 10, 70, 10),
    4: (95, 2, 95, 2),
    5: (20, 80, 80, 99),
}


def _configure(service: ComplianceService, skip_node: int | None = None) -> None:
    service.set_priors(ADMIN, 90, 90)
    for node_id, cpt in CPTS.items():
        if node_id != skip_node:
            service.set_cpt(ADMIN, node_id, *cpt)


def _submit_all(service: ComplianceService, shipment_id: int, evidence: tuple) -> None:
    for node_id, value in enumerate(evidence, start=1):
        service.submit_evidence(SENSOR, shipment_id, node_id, value)


@pytest.fixture
def bare_service() -> ComplianceService:
    service = ComplianceService(ADMIN)
    service.grant_role(ADMIN, Role.SENSOR, SENSOR)
    service.grant_role(ADMIN, Role.SENDER, SENDER)
    return service


@pytest.fixture
def service(bare_service: ComplianceService) -> ComplianceService:
    _configure(bare_service)
    return bare_service


class TestScenarios:
    def test_compliant_shipment_pays_carrier(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT)
        receipt = service.validate_and_pay(CARRIER, sid)

        assert (receipt.posterior_f1, receipt.posterior_f2) == (100, 100)
        assert service.balance_of(CARRIER) == AMOUNT
        assert service.escrow_held(sid) == 0
        assert service.get_shipment(sid).state == ShipmentState.SETTLED
        assert verify_receipt(receipt) == []

    def test_light_tripped_still_clears_threshold(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, LIGHT_TRIPPED)
        receipt = service.validate_and_pay(CARRIER, sid)
        assert (receipt.posterior_f1, receipt.posterior_f2) == (100, 99)
        assert service.balance_of(CARRIER) == AMOUNT

    def test_broken_seal_rejected(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        with pytest.raises(ComplianceRejection) as exc:
            service.validate_and_pay(CARRIER, sid)

        assert (exc.value.posterior_f1, exc.value.posterior_f2) == (100, 1)
        assert "Compliance requirements not met" in str(exc.value)
        assert service.escrow_held(sid) == AMOUNT
        assert service.balance_of(CARRIER) == 0
        assert service.get_shipment(sid).state == ShipmentState.OPEN

    def test_temperature_excursion_rejected(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, TEMPERATURE_EXCURSION)
        with pytest.raises(ComplianceRejection) as exc:
            service.validate_and_pay(CARRIER, sid)
        assert (exc.value.posterior_f1, exc.value.posterior_f2) == (19, 100)

    def test_incomplete_evidence(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        for node_id in (1, 2, 3, 5):
            service.submit_evidence(SENSOR, sid, node_id, True)
        with pytest.raises(IncompleteDataError) as exc:
            service.validate_and_pay(CARRIER, sid)
        assert exc.value.missing_nodes == [4]
        assert service.escrow_held(sid) == AMOUNT

    def test_incomplete_evidence_is_retryable(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT[:4])
        with pytest.raises(IncompleteDataError):
            service.validate_and_pay(CARRIER, sid)
        service.submit_evidence(SENSOR, sid, 5, True)
        service.validate_and_pay(CARRIER, sid)
        assert service.balance_of(CARRIER) == AMOUNT

    def test_non_sensor_cannot_submit(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        with pytest.raises(AuthorizationError):
            service.submit_evidence(SENDER, sid, 1, True)
        assert service.get_shipment(sid).evidence == {}

    def test_second_settlement_fails(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT)
        service.validate_and_pay(CARRIER, sid)
        with pytest.raises(ValidationError, match="already settled"):
            service.validate_and_pay(CARRIER, sid)
        assert service.balance_of(CARRIER) == AMOUNT
        assert len(service.event_log.events(EventKind.SHIPMENT_SETTLED)) == 1

    def test_receipt_time_matches_shipment(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT)
        receipt = service.validate_and_pay(CARRIER, sid)

        settled = service.get_shipment(sid).settled_utc
        [event] = service.event_log.events(EventKind.SHIPMENT_SETTLED)
        assert receipt.settled_utc == settled.strftime("%Y-%m-%dT%H:%M:%SZ")
        assert receipt.settled_utc == event.timestamp_utc


class TestConcurrentSettlement:
    def test_only_one_of_many_threads_is_paid(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT)

        start = threading.Barrier(16)
        receipts = []
        errors = []

        def settle() -> None:
            start.wait()
            try:
                receipts.append(service.validate_and_pay(CARRIER, sid))
            except ValidationError as e:
                errors.append(e)

        workers = [threading.Thread(target=settle) for _ in range(16)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert len(receipts) == 1
        assert len(errors) == 15
        assert all("already settled" in str(e) for e in errors)
        assert service.balance_of(CARRIER) == AMOUNT
        assert service.escrow_held(sid) == 0
        assert len(service.event_log.events(EventKind.SHIPMENT_SETTLED)) == 1


class TestSettlementChecks:
    def test_unknown_shipment(self, service: ComplianceService) -> None:
        with pytest.raises(ValidationError, match="Unknown shipment"):
            service.validate_and_pay(CARRIER, 42)

    def test_only_carrier_may_settle(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, COMPLIANT)
        for caller in (SENDER, ADMIN, "someone_else"):
            with pytest.raises(AuthorizationError):
                service.validate_and_pay(caller, sid)
        assert service.escrow_held(sid) == AMOUNT

    def test_missing_cpt(self, bare_service: ComplianceService) -> None:
        _configure(bare_service, skip_node=3)
        sid = bare_service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(bare_service, sid, COMPLIANT)
        with pytest.raises(ModelNotConfiguredError) as exc:
            bare_service.validate_and_pay(CARRIER, sid)
        assert exc.value.missing == ["cpt[3]"]

    def test_missing_priors(self, bare_service: ComplianceService) -> None:
        for node_id, cpt in CPTS.items():
            bare_service.set_cpt(ADMIN, node_id, *cpt)
        sid = bare_service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(bare_service, sid, COMPLIANT)
        with pytest.raises(ModelNotConfiguredError):
            bare_service.validate_and_pay(CARRIER, sid)

    def test_impossible_evidence(self, bare_service: ComplianceService) -> None:
        bare_service.set_priors(ADMIN, 100, 100)
        for node_id in CPTS:
            bare_service.set_cpt(ADMIN, node_id, 50, 50, 50, 0 if node_id == 1 else 50)
        sid = bare_service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(bare_service, sid, COMPLIANT)
        with pytest.raises(InternalInvariantError):
            bare_service.validate_and_pay(CARRIER, sid)
        assert bare_service.escrow_held(sid) == AMOUNT

    def test_submission_order_does_not_matter(self, service: ComplianceService) -> None:
        forward = service.create_shipment(SENDER, CARRIER, AMOUNT)
        backward = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, forward, COMPLIANT)
        for node_id in (5, 4, 3, 2, 1):
            service.submit_evidence(SENSOR, backward, node_id, COMPLIANT[node_id - 1])
        a = service.validate_and_pay(CARRIER, forward)
        b = service.validate_and_pay(CARRIER, backward)
        assert a.joints == b.joints
        assert (a.posterior_f1, a.posterior_f2) == (b.posterior_f1, b.posterior_f2)

    def test_resubmission_overwrites(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        service.submit_evidence(SENSOR, sid, 2, True)
        service.submit_evidence(SENSOR, sid, 4, False)
        receipt = service.validate_and_pay(CARRIER, sid)
        assert receipt.evidence == COMPLIANT
        assert len(service.event_log.events(EventKind.EVIDENCE_SUBMITTED)) == 7

    def test_model_change_applies_to_open_shipments(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, LIGHT_TRIPPED)
        # Stricter light sensor: a tripped light now implicates packaging
        service.set_cpt(ADMIN, 4, 95, 1, 95, 1)
        service.set_priors(ADMIN, 90, 50)
        with pytest.raises(ComplianceRejection):
            service.validate_and_pay(CARRIER, sid)


class TestRejectionLock:
    def test_rejection_locks_evidence(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        with pytest.raises(ComplianceRejection):
            service.validate_and_pay(CARRIER, sid)
        with pytest.raises(ValidationError, match="locked"):
            service.submit_evidence(SENSOR, sid, 2, True)
        assert service.get_shipment(sid).evidence[2] is False

    def test_rejection_recorded_in_audit_trail(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        with pytest.raises(ComplianceRejection):
            service.validate_and_pay(CARRIER, sid)
        [event] = service.event_log.events(EventKind.SETTLEMENT_REJECTED)
        assert event.payload["posterior_f2"] == 1
        assert event.actor_id == CARRIER

    def test_repeated_settlement_attempt_keeps_rejecting(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        for _ in range(2):
            with pytest.raises(ComplianceRejection):
                service.validate_and_pay(CARRIER, sid)
        assert service.escrow_held(sid) == AMOUNT

    def test_repeated_rejection_writes_one_event(self, service: ComplianceService) -> None:
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        with pytest.raises(ComplianceRejection):
            service.validate_and_pay(CARRIER, sid)
        before = service.event_log.count

        for _ in range(3):
            with pytest.raises(ComplianceRejection) as exc_info:
                service.validate_and_pay(CARRIER, sid)
            assert exc_info.value.posterior_f2 == 1
        assert service.event_log.count == before
        assert len(service.event_log.events(EventKind.SETTLEMENT_REJECTED)) == 1


class TestSettlementEngine:
    @pytest.mark.parametrize("threshold", [-1, 101, 95.0, True])
    def test_invalid_threshold(self, threshold: object) -> None:
        with pytest.raises(ValidationError):
            SettlementEngine(threshold)  # type: ignore[arg-type]

    def test_lower_threshold_accepts_more(self) -> None:
        service = ComplianceService(ADMIN, threshold=1)
        service.grant_role(ADMIN, Role.SENSOR, SENSOR)
        service.grant_role(ADMIN, Role.SENDER, SENDER)
        _configure(service)
        sid = service.create_shipment(SENDER, CARRIER, AMOUNT)
        _submit_all(service, sid, BROKEN_SEAL)
        receipt = service.validate_and_pay(CARRIER, sid)
        assert receipt.threshold == 1
        assert verify_receipt(receipt) == []
