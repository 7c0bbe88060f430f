"""Bayesian network model: two hidden factors, five evidence nodes.

All probabilities are integers scaled by 100. No floats anywhere in the
model. Hidden factors:
    F1: temperature-chain integrity
    F2: packaging integrity
Evidence nodes (each conditioned on both factors):
    E1 temperature in range, E2 seal intact, E3 shock detected,
    E4 light sensor tripped, E5 arrival scan on time

Hypotheses are enumerated in the fixed order (F,F), (F,T), (T,F), (T,T),
which is also the column order of every CPT.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from coldchain.errors import ValidationError


SCALE = 100
COMPLIANCE_THRESHOLD = 95


class EvidenceNode(enum.IntEnum):
    """Observable evidence signals, identified by node id 1..5."""
    TEMPERATURE = 1
    SEAL = 2
    SHOCK = 3
    LIGHT = 4
    ARRIVAL_SCAN = 5


NODE_IDS: tuple[int, ...] = tuple(int(n) for n in EvidenceNode)

# (F1, F2) assignments in CPT column order
HYPOTHESES: tuple[tuple[bool, bool], ...] = (
    (False, False),
    (False, True),
    (True, False),
    (True, True),
)


def check_probability(value: object, name: str) -> int:
    """Return value if it is an int percentage in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer percentage, got {value!r}")
    if not 0 <= value <= SCALE:
        raise ValidationError(f"{name} must be in [0, {SCALE}], got {value}")
    return value


def check_node_id(node_id: object) -> int:
    """Return node_id if it names one of the five evidence nodes."""
    if isinstance(node_id, bool) or not isinstance(node_id, int):
        raise ValidationError(f"Node id must be an integer, got {node_id!r}")
    if node_id not in NODE_IDS:
        raise ValidationError(
            f"Unknown evidence node {node_id}: expected one of {list(NODE_IDS)}"
        )
    return node_id


@dataclass(frozen=True)
class Priors:
    """P(F1=true) and P(F2=true) as percentages."""
    prior_f1: int
    prior_f2: int

    def __post_init__(self) -> None:
        check_probability(self.prior_f1, "prior_f1")
        check_probability(self.prior_f2, "prior_f2")

    def term(self, f1: bool, f2: bool) -> int:
        """Prior weight of one hypothesis, in [0, 100**2]."""
        t1 = self.prior_f1 if f1 else SCALE - self.prior_f1
        t2 = self.prior_f2 if f2 else SCALE - self.prior_f2
        return t1 * t2


@dataclass(frozen=True)
class ConditionalTable:
    """P(node=true | F1, F2) for the four factor combinations."""
    p_ff: int
    p_ft: int
    p_tf: int
    p_tt: int

    def __post_init__(self) -> None:
        for name in ("p_ff", "p_ft", "p_tf", "p_tt"):
            check_probability(getattr(self, name), name)

    def probability(self, f1: bool, f2: bool) -> int:
        if f1:
            return self.p_tt if f2 else self.p_tf
        return self.p_ft if f2 else self.p_ff

    def likelihood(self, observed: bool, f1: bool, f2: bool) -> int:
        """Likelihood of the observed value under one hypothesis."""
        p = self.probability(f1, f2)
        return p if observed else SCALE - p

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.p_ff, self.p_ft, self.p_tf, self.p_tt)


@dataclass(frozen=True)
class NetworkModel:
    """Immutable view of the operator-configured model.

    The service holds one of these and replaces it wholesale on every
    set_priors / set_cpt, bumping the revision.
    """
    priors: Optional[Priors] = None
    cpts: Mapping[int, ConditionalTable] = field(
        default_factory=lambda: MappingProxyType({})
    )
    revision: int = 0

    def missing_parameters(self) -> list[str]:
        missing: list[str] = []
        if self.priors is None:
            missing.append("priors")
        for node_id in NODE_IDS:
            if node_id not in self.cpts:
                missing.append(f"cpt[{node_id}]")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_parameters()

    def with_priors(self, priors: Priors) -> NetworkModel:
        return NetworkModel(
            priors=priors, cpts=self.cpts, revision=self.revision + 1,
        )

    def with_cpt(self, node_id: int, table: ConditionalTable) -> NetworkModel:
        cpts = dict(self.cpts)
        cpts[check_node_id(node_id)] = table
        return NetworkModel(
            priors=self.priors,
            cpts=MappingProxyType(cpts),
            revision=self.revision + 1,
        )

    def to_dict(self) -> dict:
        return {
            "revision": self.revision,
            "priors": (
                None if self.priors is None
                else [self.priors.prior_f1, self.priors.prior_f2]
            ),
            "cpts": {
                str(node_id): list(self.cpts[node_id].as_tuple())
                for node_id in sorted(self.cpts)
            },
        }
