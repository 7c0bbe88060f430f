"""Canonical hashing and blockchain anchoring of settlement receipts.

Anchoring embeds the SHA-256 digest of a settlement receipt into an
Ethereum transaction, giving a timestamped, publicly verifiable witness
that the payout decision existed in exactly that form. No code executes
on-chain; the transaction is a 0-value self-send carrying the digest in
its data field.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful blockchain anchor."""
    sha256_hash: str
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str


def canonical_json(payload: Any) -> bytes:
    """Canonical form: sorted keys, Unicode preserved, UTF-8 encoded."""
    return json.dumps(
        payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"),
    ).encode("utf-8")


def canonical_digest(payload: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of payload."""
    return hashlib.sha256(canonical_json(payload)).hexdigest()


def strip_digest_prefix(digest: str) -> str:
    return digest.split(":", 1)[1] if digest.startswith("sha256:") else digest


def anchor_to_chain(
    digest: str,
    rpc_url: str,
    private_key: str,
    chain_id: int = SEPOLIA_CHAIN_ID,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
) -> AnchorRecord:
    """Anchor a SHA-256 digest to Ethereum by embedding it in a transaction.

    Sends a 0-ETH self-send transaction with the digest in the data field
    and waits for one confirmation.

    Args:
        digest: SHA-256 hex string, with or without a "sha256:" prefix.
        rpc_url: Ethereum RPC endpoint URL.
        private_key: Hex-encoded private key for signing.
        chain_id: Network chain ID (default: Sepolia).
        gas: Gas limit for the transaction.
        gas_price_gwei: Gas price in gwei.
    """
    from web3 import Web3, HTTPProvider
    from eth_account import Account

    raw_digest = strip_digest_prefix(digest)
    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    nonce = w3.eth.get_transaction_count(acct.address)
    tx = {
        "to": acct.address,
        "value": 0,
        "gas": gas,
        "gasPrice": w3.to_wei(gas_price_gwei, "gwei"),
        "nonce": nonce,
        "chainId": chain_id,
        "data": bytes.fromhex(raw_digest),
    }

    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info("Anchor tx sent: %s, waiting for confirmation", tx_hash.hex())

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=300)

    if chain_id == SEPOLIA_CHAIN_ID:
        explorer_url = f"https://sepolia.etherscan.io/tx/{tx_hash.hex()}"
    else:
        explorer_url = ""
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    logger.info("Anchor confirmed in block %s", receipt.blockNumber)

    return AnchorRecord(
        sha256_hash=raw_digest,
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=now,
        explorer_url=explorer_url,
    )
