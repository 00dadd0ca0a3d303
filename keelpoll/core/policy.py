"""Label-driven policy classification.

Pure lookups over a deployment's labels, no side effects.
"""

from collections.abc import Mapping

from .models import PolicyType, TriggerType

POLICY_LABEL = "keel.policy"
TRIGGER_LABEL = "keel.trigger"
POLL_SCHEDULE_LABEL = "keel.pollSchedule"

_POLICIES = {
    "all": PolicyType.ALL,
    "major": PolicyType.MAJOR,
    "minor": PolicyType.MINOR,
    "patch": PolicyType.PATCH,
    "force": PolicyType.FORCE,
}


def parse_policy(value: str | None) -> PolicyType:
    """Map a policy label value to a PolicyType.

    Unknown or missing values map to PolicyType.NONE.
    """
    if not value:
        return PolicyType.NONE
    return _POLICIES.get(value.strip().lower(), PolicyType.NONE)


def parse_trigger(value: str | None) -> TriggerType:
    """Map a trigger label value to a TriggerType."""
    if value and value.strip().lower() == TriggerType.POLL.value:
        return TriggerType.POLL
    return TriggerType.DEFAULT


def classify_policy(
    labels: Mapping[str, str], label: str = POLICY_LABEL
) -> PolicyType:
    return parse_policy(labels.get(label))


def classify_trigger(
    labels: Mapping[str, str], label: str = TRIGGER_LABEL
) -> TriggerType:
    return parse_trigger(labels.get(label))


def resolve_schedule(
    labels: Mapping[str, str],
    default: str,
    label: str = POLL_SCHEDULE_LABEL,
) -> str:
    """Return the poll schedule for a deployment.

    A label that is present wins even when it is an empty string, so a
    blank override still goes through validation instead of silently
    falling back to the default.
    """
    if label in labels:
        return labels[label]
    return default


__all__ = [
    "POLICY_LABEL",
    "POLL_SCHEDULE_LABEL",
    "TRIGGER_LABEL",
    "classify_policy",
    "classify_trigger",
    "parse_policy",
    "parse_trigger",
    "resolve_schedule",
]
