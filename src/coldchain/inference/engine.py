"""Exact posterior inference in fixed-point integer arithmetic.

Enumerates the four hidden-state hypotheses (F1, F2) and computes, for
each, the unnormalised joint probability of the observed evidence:

    joint(h) = prior(h) * prod_i likelihood_i(h)

prior(h) is a product of two factors <= 100 and each of the five
likelihoods is <= 100, so joint(h) <= 100**7 = 10**14. Python ints are
exact, so no rescaling is ever needed.

Posteriors are rounded half-up with pure integer division:

    round(num * 100 / Z) == (2 * num * 100 + Z) // (2 * Z)

which makes the result bit-identical for anyone re-deriving it from the
same model and evidence.

Everything here is a pure function. No state, no I/O, no floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, NamedTuple, Sequence, Union

from coldchain.errors import InternalInvariantError, ValidationError
from coldchain.models.network import (
    HYPOTHESES,
    NODE_IDS,
    SCALE,
    ConditionalTable,
    NetworkModel,
    Priors,
)


Evidence = Union[Mapping[int, bool], Sequence[bool]]


class Posterior(NamedTuple):
    """Posterior percentages P(F1=true | e) and P(F2=true | e)."""
    f1: int
    f2: int


@dataclass(frozen=True)
class InferenceTrace:
    """Full derivation of a posterior, for receipts and audit.

    joints are in HYPOTHESES order: (F,F), (F,T), (T,F), (T,T).
    """
    joints: tuple[int, int, int, int]
    normalizer: int
    posterior: Posterior

    def to_dict(self) -> dict:
        return {
            "joints": {
                f"{'T' if f1 else 'F'}{'T' if f2 else 'F'}": j
                for (f1, f2), j in zip(HYPOTHESES, self.joints)
            },
            "normalizer": self.normalizer,
            "posterior_f1": self.posterior.f1,
            "posterior_f2": self.posterior.f2,
        }


def ratio_percent(numerator: int, denominator: int) -> int:
    """numerator / denominator as a percentage, rounded half-up."""
    if denominator <= 0:
        raise InternalInvariantError(
            f"Cannot normalise: denominator is {denominator}"
        )
    return (2 * numerator * SCALE + denominator) // (2 * denominator)


def _normalise_evidence(evidence: Evidence) -> tuple[bool, ...]:
    if isinstance(evidence, Mapping):
        missing = [n for n in NODE_IDS if n not in evidence]
        if missing:
            raise ValidationError(f"Evidence missing for nodes {missing}")
        values = [evidence[n] for n in NODE_IDS]
    else:
        values = list(evidence)
        if len(values) != len(NODE_IDS):
            raise ValidationError(
                f"Expected {len(NODE_IDS)} evidence values, got {len(values)}"
            )
    for node_id, value in zip(NODE_IDS, values):
        if not isinstance(value, bool):
            raise ValidationError(
                f"Evidence for node {node_id} must be a bool, got {value!r}"
            )
    return tuple(values)


def joint_distribution(
    priors: Priors,
    cpts: Mapping[int, ConditionalTable],
    evidence: Evidence,
) -> tuple[int, int, int, int]:
    """Unnormalised joint P(h, e) * 100**7 for each hypothesis h."""
    missing = [n for n in NODE_IDS if n not in cpts]
    if missing:
        raise ValidationError(f"CPT missing for nodes {missing}")
    observed = _normalise_evidence(evidence)

    joints = []
    for f1, f2 in HYPOTHESES:
        joint = priors.term(f1, f2)
        for node_id, value in zip(NODE_IDS, observed):
            joint *= cpts[node_id].likelihood(value, f1, f2)
        joints.append(joint)
    return (joints[0], joints[1], joints[2], joints[3])


def explain(
    priors: Priors,
    cpts: Mapping[int, ConditionalTable],
    evidence: Evidence,
) -> InferenceTrace:
    """Compute the posterior together with the joints it was derived from."""
    j_ff, j_ft, j_tf, j_tt = joint_distribution(priors, cpts, evidence)
    z = j_ff + j_ft + j_tf + j_tt
    if z == 0:
        raise InternalInvariantError(
            "Observed evidence has zero probability under every hypothesis; "
            "the configured model cannot explain it"
        )
    posterior = Posterior(
        f1=ratio_percent(j_tf + j_tt, z),
        f2=ratio_percent(j_ft + j_tt, z),
    )
    return InferenceTrace(
        joints=(j_ff, j_ft, j_tf, j_tt), normalizer=z, posterior=posterior,
    )


def infer(
    priors: Priors,
    cpts: Mapping[int, ConditionalTable],
    evidence: Evidence,
) -> Posterior:
    """Posterior percentages for F1 and F2 given all five observations."""
    return explain(priors, cpts, evidence).posterior


def infer_model(model: NetworkModel, evidence: Evidence) -> InferenceTrace:
    """explain() against a configured NetworkModel."""
    if model.priors is None:
        raise ValidationError("Priors are not configured")
    return explain(model.priors, model.cpts, evidence)
