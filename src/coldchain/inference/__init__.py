"""Inference engine: exact integer posteriors over the fixed network."""

from coldchain.inference.engine import (
    InferenceTrace,
    Posterior,
    explain,
    infer,
    infer_model,
    joint_distribution,
    ratio_percent,
)

__all__ = [
    "InferenceTrace",
    "Posterior",
    "explain",
    "infer",
    "infer_model",
    "joint_distribution",
    "ratio_percent",
]
