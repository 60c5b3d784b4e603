"""Fallback policy: one choice per pipeline, fixed at configuration time."""

from enum import Enum


class FallbackPolicy(str, Enum):
    """
    How the pipeline reacts to an exhausted token budget or a failed vision call.

    hard_fail: abort the run with a typed error.
    degrade: continue with local data only (default metadata, no further model calls)
    and record the substitution in the audit trail.
    """

    hard_fail = "hard_fail"
    degrade = "degrade"
