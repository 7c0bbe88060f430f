"""Error hierarchy for the compliance engine.

Every failure is surfaced to the caller as a typed exception and leaves
state untouched. Nothing is retried automatically.
"""

from __future__ import annotations

from typing import Optional


class ColdchainError(Exception):
    """Base class for all engine errors."""


class AuthorizationError(ColdchainError, PermissionError):
    """Raised when the caller lacks the role an operation requires."""

    def __init__(self, principal: str, required: str) -> None:
        self.principal = principal
        self.required = required
        super().__init__(f"{principal!r} is not authorised: requires {required}")


class ValidationError(ColdchainError, ValueError):
    """Raised for out-of-range inputs, unknown nodes or unusable shipments."""


class ModelNotConfiguredError(ValidationError):
    """Raised when settlement needs a prior or CPT the operator never set."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            f"Probability model incomplete: {', '.join(self.missing)} not configured"
        )


class IncompleteDataError(ColdchainError):
    """Raised when a shipment is settled before all evidence is in."""

    def __init__(self, shipment_id: int, missing_nodes: list[int]) -> None:
        self.shipment_id = shipment_id
        self.missing_nodes = list(missing_nodes)
        super().__init__(
            f"Evidence incomplete for shipment {shipment_id}: "
            f"missing nodes {self.missing_nodes}"
        )


class ComplianceRejection(ColdchainError):
    """Posteriors fell below the compliance threshold.

    An expected business outcome, not a fault. The shipment stays open
    and its escrow is untouched.
    """

    def __init__(
        self,
        shipment_id: int,
        posterior_f1: int,
        posterior_f2: int,
        threshold: int,
    ) -> None:
        self.shipment_id = shipment_id
        self.posterior_f1 = posterior_f1
        self.posterior_f2 = posterior_f2
        self.threshold = threshold
        super().__init__(
            f"Compliance requirements not met for shipment {shipment_id}: "
            f"P(F1)={posterior_f1}, P(F2)={posterior_f2}, threshold={threshold}"
        )


class InternalInvariantError(ColdchainError):
    """Raised when the observed evidence has zero probability under the model."""


class AuditTrailError(ColdchainError):
    """Raised when an audit event could not be recorded.

    The operation that produced the event has not been applied.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)
