"""Tests for procprio data models."""

import pytest

from procprio.models import LifecycleEvent, Priority, ProcessIdentity, RuleCategory, TrackedProcess


def test_priority_ranked_order():
    """Test ranked priorities compare from Idle up to HighWithScript."""
    ranked = [
        Priority.IDLE,
        Priority.BELOW_NORMAL,
        Priority.NORMAL,
        Priority.ABOVE_NORMAL,
        Priority.HIGH,
        Priority.HIGH_WITH_SCRIPT,
    ]
    assert sorted(ranked) == ranked
    assert Priority.IGNORE < Priority.IDLE
    assert Priority.CONDITIONAL_IDLE < Priority.IGNORE


def test_priority_os_class():
    """Test policy values map onto OS classes correctly."""
    assert Priority.HIGH_WITH_SCRIPT.os_class is Priority.HIGH
    assert Priority.BELOW_NORMAL.os_class is Priority.BELOW_NORMAL
    assert Priority.IGNORE.os_class is None
    assert Priority.CONDITIONAL_IDLE.os_class is None


def test_priority_label():
    """Test Priority label is human-readable."""
    assert Priority.ABOVE_NORMAL.label == "above normal"
    assert Priority.HIGH_WITH_SCRIPT.label == "high with script"


def test_rule_category_values():
    """Test RuleCategory enum has the four rule key types."""
    assert {category.value for category in RuleCategory} == {
        "full_path",
        "short_name",
        "partial",
        "username",
    }


def test_process_identity_is_frozen():
    """Test that ProcessIdentity is immutable (frozen)."""
    identity = ProcessIdentity(
        pid=1,
        executable_hash="abc",
        short_name="init",
        full_path="/sbin/init",
        owning_user_ids=frozenset({"0"}),
    )

    with pytest.raises(AttributeError):
        identity.pid = 999


def test_process_identity_uses_slots():
    """Test that ProcessIdentity uses __slots__ for memory efficiency."""
    identity = ProcessIdentity(
        pid=1,
        executable_hash="abc",
        short_name="init",
        full_path="/sbin/init",
        owning_user_ids=frozenset({"0"}),
    )

    assert not hasattr(identity, "__dict__")
    assert identity.hosted_service_names is None
    assert identity.username == ""


def test_tracked_process_defaults():
    """Test TrackedProcess starts without annotations."""
    tracked = TrackedProcess(pid=10, name="game")

    assert tracked.identity is None
    assert tracked.priority is None
    assert not tracked.high_power
    assert not tracked.conditional_idle
    assert not tracked.keep_high


def test_lifecycle_event_creation():
    """Test LifecycleEvent dataclass creation."""
    event = LifecycleEvent(kind="started", pid=5, name="game", priority=Priority.HIGH, timestamp=1.0)

    assert event.kind == "started"
    assert event.priority is Priority.HIGH
