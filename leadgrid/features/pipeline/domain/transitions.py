"""
Per-stage transition tables for the lead pipeline.

Each stage (rating, enrich, crm) is an independent state machine; a lead
can be enriched while its rating is still pending config, and so on.
"""

from leadgrid.models.domain.lead_domain import (
    CrmSyncStatus,
    EnrichStatus,
    RatingStatus,
    Stage,
)


class InvalidTransition(Exception):
    """Raised for a status change the stage's table does not allow."""

    def __init__(self, stage: Stage | str, from_status: str, to_status: str):
        super().__init__(f"Invalid {stage} transition: {from_status} -> {to_status}")
        self.stage = stage
        self.from_status = from_status
        self.to_status = to_status
        self.recoverable = False


_R = RatingStatus
_E = EnrichStatus
_C = CrmSyncStatus

TRANSITIONS: dict[Stage, dict[str, frozenset[str]]] = {
    Stage.RATING: {
        _R.PENDING: frozenset({_R.PROCESSING, _R.SKIPPED}),
        # Back to pending releases a claim so a queue retry can take it again.
        _R.PROCESSING: frozenset({_R.COMPLETED, _R.FAILED, _R.PENDING_CONFIG, _R.PENDING}),
        _R.FAILED: frozenset({_R.PENDING, _R.SKIPPED}),
        _R.PENDING_CONFIG: frozenset({_R.PENDING, _R.SKIPPED}),
        _R.COMPLETED: frozenset(),
        _R.SKIPPED: frozenset(),
    },
    Stage.ENRICH: {
        _E.PENDING: frozenset({_E.ENRICHED, _E.FAILED, _E.SKIPPED}),
        _E.FAILED: frozenset({_E.PENDING}),
        _E.ENRICHED: frozenset(),
        _E.SKIPPED: frozenset(),
    },
    Stage.CRM: {
        _C.PENDING: frozenset({_C.PROCESSING}),
        _C.PROCESSING: frozenset({_C.SYNCED, _C.FAILED, _C.PENDING}),
        _C.FAILED: frozenset({_C.PENDING}),
        _C.SYNCED: frozenset(),
    },
}

# States an operator may send back to pending.
REARMABLE: dict[Stage, frozenset[str]] = {
    Stage.RATING: frozenset({_R.FAILED, _R.PENDING_CONFIG}),
    Stage.ENRICH: frozenset({_E.FAILED}),
    Stage.CRM: frozenset({_C.FAILED}),
}


def can_transition(stage: Stage | str, from_status: str, to_status: str) -> bool:
    table = TRANSITIONS[Stage(stage)]
    return str(to_status) in table.get(str(from_status), frozenset())


def validate_transition(stage: Stage | str, from_status: str, to_status: str) -> None:
    if not can_transition(stage, from_status, to_status):
        raise InvalidTransition(stage, str(from_status), str(to_status))


def sources_for(stage: Stage | str, to_status: str) -> list[str]:
    """Every status the stage may leave for `to_status`."""
    table = TRANSITIONS[Stage(stage)]
    return sorted(source for source, targets in table.items() if str(to_status) in targets)
