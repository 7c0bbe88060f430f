"""Coldchain: Bayesian compliance and escrow settlement for cold-chain shipments."""

from coldchain.access.roles import Role
from coldchain.errors import (
    AuditTrailError,
    AuthorizationError,
    ColdchainError,
    ComplianceRejection,
    IncompleteDataError,
    InternalInvariantError,
    ModelNotConfiguredError,
    ValidationError,
)
from coldchain.service import ComplianceService
from coldchain.settlement.receipt import SettlementReceipt, verify_receipt

__version__ = "0.1.0"

__all__ = [
    "AuditTrailError",
    "AuthorizationError",
    "ColdchainError",
    "ComplianceRejection",
    "ComplianceService",
    "IncompleteDataError",
    "InternalInvariantError",
    "ModelNotConfiguredError",
    "Role",
    "SettlementReceipt",
    "ValidationError",
    "verify_receipt",
]
