"""Core data models for the compliance engine."""

from coldchain.models.network import (
    COMPLIANCE_THRESHOLD,
    HYPOTHESES,
    NODE_IDS,
    SCALE,
    ConditionalTable,
    EvidenceNode,
    NetworkModel,
    Priors,
)
from coldchain.models.shipment import Shipment, ShipmentState

__all__ = [
    "COMPLIANCE_THRESHOLD",
    "HYPOTHESES",
    "NODE_IDS",
    "SCALE",
    "ConditionalTable",
    "EvidenceNode",
    "NetworkModel",
    "Priors",
    "Shipment",
    "ShipmentState",
]
