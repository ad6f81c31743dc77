"""Resolver module - Natural-language target resolution."""

from .resolver import (
    ACCEPT_THRESHOLD,
    REJECT_THRESHOLD,
    CandidateCache,
    LiveTargetResolver,
    TargetResolver,
)

__all__ = [
    "ACCEPT_THRESHOLD",
    "REJECT_THRESHOLD",
    "CandidateCache",
    "LiveTargetResolver",
    "TargetResolver",
]
