"""Shipment registry and escrow custody."""

from coldchain.registry.funds import FundsLedger, Transfer
from coldchain.registry.shipments import ShipmentRegistry

__all__ = [
    "FundsLedger",
    "ShipmentRegistry",
    "Transfer",
]
