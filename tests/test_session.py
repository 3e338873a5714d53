"""Tests for the configuration session."""

import pytest

from procprio.identity import executable_hash
from procprio.models import Priority, ProcessIdentity, RuleCategory
from procprio.session import ConfigurationSession, describe_process


def record(store, pid, name, path, users=frozenset({"1000"}), username="alice"):
    identity = ProcessIdentity(
        pid=pid,
        executable_hash=executable_hash(path),
        short_name=name,
        full_path=path,
        owning_user_ids=users,
        username=username,
    )
    store.record_process(identity)
    return identity


class TestNextItem:
    """Tests for walking unclassified items."""

    def test_empty_store(self, store):
        """Test a session over an empty store has nothing to offer."""
        session = ConfigurationSession(store)
        assert session.next_item() is None

    def test_processes_before_services(self, store):
        """Test unclassified processes come first, then services."""
        record(store, 1, "a", "C:\\a.exe")
        store.record_services(["svcA"])
        session = ConfigurationSession(store)

        first = session.next_item()
        assert first.short_name == "a"
        assert session.next_item() == "svcA"
        assert session.next_item() is None

    def test_processes_with_rules_are_skipped(self, store):
        """Test a process already covered by a rule is not offered."""
        record(store, 1, "a", "C:\\a.exe")
        record(store, 2, "b", "C:\\b.exe")
        store.set_rule(RuleCategory.SHORT_NAME, "a", Priority.IDLE)
        session = ConfigurationSession(store)

        assert session.next_item().short_name == "b"
        assert session.next_item() is None

    def test_rule_covers_later_items(self, store):
        """Test a partial rule added mid-session covers the following records."""
        first = record(store, 1, "tool1", "C:\\tools\\tool1.exe")
        record(store, 2, "tool2", "C:\\tools\\tool2.exe")
        session = ConfigurationSession(store)

        item = session.next_item()
        assert item.executable_hash == first.executable_hash
        session.assign_process_rule(item, Priority.BELOW_NORMAL, RuleCategory.PARTIAL, "\\tools\\")

        assert session.next_item() is None

    def test_services_with_rules_are_skipped(self, store):
        """Test only services without a rule are offered."""
        store.record_services(["svcA", "svcB"])
        store.set_service_rule("svcA", Priority.NORMAL)
        session = ConfigurationSession(store)

        assert session.next_item() == "svcB"
        assert session.next_item() is None


class TestPriorityKeys:
    """Tests for the keys offered by the priority prompt."""

    def test_power_key_hidden_without_scripts(self, store):
        """Test high-power priority is not offered without power scripts."""
        session = ConfigurationSession(store)
        keys = session.priority_keys()

        assert "p" not in keys
        assert keys["c"] is Priority.CONDITIONAL_IDLE
        assert keys["s"] is None

    def test_power_key_shown_with_scripts(self, store):
        """Test high-power priority is offered once both scripts are set."""
        store.set_power_scripts("low.cmd", "high.cmd")
        session = ConfigurationSession(store)

        assert session.priority_keys()["p"] is Priority.HIGH_WITH_SCRIPT

    def test_power_key_never_for_services(self, store):
        """Test services are never offered high-power priority."""
        store.set_power_scripts("low.cmd", "high.cmd")
        session = ConfigurationSession(store)

        assert "p" not in session.priority_keys(for_service=True)

    def test_one_script_is_not_configured(self, store):
        """Test a single power script does not enable high-power priority."""
        store.set_power_scripts("low.cmd", None)
        session = ConfigurationSession(store)

        assert not session.power_scripts_configured


class TestAssign:
    """Tests for storing rules from a session."""

    def test_short_name_rule(self, store):
        """Test assigning a short name rule stores it under the short name."""
        record(store, 1, "a", "C:\\a.exe")
        session = ConfigurationSession(store)

        session.assign_process_rule(session.next_item(), Priority.HIGH, RuleCategory.SHORT_NAME)

        assert store.get_rule(RuleCategory.SHORT_NAME, "a") is Priority.HIGH
        assert session.changes_made

    def test_full_path_rule(self, store):
        """Test assigning a full path rule stores it under the executable hash."""
        identity = record(store, 1, "a", "C:\\a.exe")
        session = ConfigurationSession(store)

        session.assign_process_rule(session.next_item(), Priority.IDLE, RuleCategory.FULL_PATH)

        assert store.get_rule(RuleCategory.FULL_PATH, identity.executable_hash) is Priority.IDLE

    def test_empty_partial_rejected(self, store):
        """Test a partial rule without a substring is rejected."""
        record(store, 1, "a", "C:\\a.exe")
        session = ConfigurationSession(store)

        with pytest.raises(ValueError):
            session.assign_process_rule(session.next_item(), Priority.IDLE, RuleCategory.PARTIAL, "")
        assert not session.changes_made

    def test_username_rule_needs_single_user(self, store):
        """Test a username rule is rejected for a process seen under several users."""
        record(store, 1, "a", "C:\\a.exe", users=frozenset({"1000", "1001"}), username="")
        session = ConfigurationSession(store)

        with pytest.raises(ValueError):
            session.assign_process_rule(session.next_item(), Priority.IDLE, RuleCategory.USERNAME)

    def test_service_rule(self, store):
        """Test assigning a service rule stores it by name."""
        session = ConfigurationSession(store)
        session.assign_service_rule("svcA", Priority.ABOVE_NORMAL)

        assert store.get_service_rule("svcA") is Priority.ABOVE_NORMAL


class TestFinish:
    """Tests for ending a session."""

    def test_finish_without_changes(self, store):
        """Test finishing without new rules leaves the change flag unset."""
        session = ConfigurationSession(store)

        assert session.finish() is False
        assert not store.get_changes_made()

    def test_finish_with_changes(self, store):
        """Test finishing after adding a rule raises the change flag."""
        session = ConfigurationSession(store)
        session.assign_service_rule("svcA", Priority.NORMAL)

        assert session.finish() is True
        assert store.get_changes_made()


def test_describe_process(store):
    """Test the process description lists path, users and parents."""
    child = record(store, 2, "game", "/opt/game/game")
    parent = record(store, 1, "launcher", "/opt/launcher")
    store.record_parent(child, parent)

    process = next(p for p in store.observed_processes() if p.short_name == "game")
    text = describe_process(process)

    assert "Short name: game" in text
    assert "Full path:  /opt/game/game" in text
    assert "alice" in text
    assert "launcher" in text
