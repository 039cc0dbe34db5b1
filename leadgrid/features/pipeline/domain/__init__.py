"""Lead pipeline state machine."""

from leadgrid.features.pipeline.domain.transitions import (
    REARMABLE,
    TRANSITIONS,
    InvalidTransition,
    can_transition,
    sources_for,
    validate_transition,
)

__all__ = [
    "REARMABLE",
    "TRANSITIONS",
    "InvalidTransition",
    "can_transition",
    "sources_for",
    "validate_transition",
]
