"""Settlement: compliance threshold, payout decision and receipts."""

from coldchain.settlement.engine import ComplianceAssessment, SettlementEngine
from coldchain.settlement.receipt import SettlementReceipt, verify_receipt

__all__ = [
    "ComplianceAssessment",
    "SettlementEngine",
    "SettlementReceipt",
    "verify_receipt",
]
