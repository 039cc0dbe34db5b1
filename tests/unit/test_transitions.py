import pytest

from leadgrid.features.pipeline.domain import (
    InvalidTransition,
    can_transition,
    sources_for,
    validate_transition,
)
from leadgrid.models.domain.lead_domain import Stage


@pytest.mark.parametrize(
    ("stage", "source", "target"),
    [
        (Stage.RATING, "pending", "processing"),
        (Stage.RATING, "processing", "pending_config"),
        (Stage.RATING, "pending_config", "pending"),
        (Stage.ENRICH, "pending", "enriched"),
        (Stage.ENRICH, "failed", "pending"),
        (Stage.CRM, "processing", "synced"),
    ],
)
def test_allowed_transitions(stage, source, target):
    assert can_transition(stage, source, target)


@pytest.mark.parametrize(
    ("stage", "source", "target"),
    [
        (Stage.RATING, "completed", "pending"),
        (Stage.RATING, "pending", "completed"),
        (Stage.ENRICH, "enriched", "pending"),
        (Stage.CRM, "synced", "pending"),
        (Stage.CRM, "pending", "synced"),
    ],
)
def test_forbidden_transitions_raise(stage, source, target):
    with pytest.raises(InvalidTransition) as exc_info:
        validate_transition(stage, source, target)

    assert exc_info.value.recoverable is False
    assert exc_info.value.from_status == source


def test_sources_for_lists_every_entry_point():
    assert sources_for(Stage.RATING, "pending") == ["failed", "pending_config", "processing"]
    assert sources_for("crm", "processing") == ["pending"]
