"""Canonical hashing and on-chain anchoring."""

from coldchain.crypto.anchor import AnchorRecord, anchor_to_chain, canonical_digest

__all__ = ["AnchorRecord", "anchor_to_chain", "canonical_digest"]
