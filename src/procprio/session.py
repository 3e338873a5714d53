"""Configuration session: assigning rules to unclassified processes and services."""

from collections import deque

import structlog

from procprio.models import ObservedProcess, Priority, RuleCategory
from procprio.rules import RuleEngine
from procprio.store import RuleStore

log = structlog.get_logger()

# Key -> priority offered by the priority prompt. 's' (skip) maps to None.
PRIORITY_KEYS: dict[str, Priority | None] = {
    "i": Priority.IDLE,
    "b": Priority.BELOW_NORMAL,
    "n": Priority.NORMAL,
    "a": Priority.ABOVE_NORMAL,
    "h": Priority.HIGH,
    "p": Priority.HIGH_WITH_SCRIPT,
    "c": Priority.CONDITIONAL_IDLE,
    "d": Priority.IGNORE,
    "s": None,
}

CATEGORY_KEYS: dict[str, RuleCategory] = {
    "f": RuleCategory.FULL_PATH,
    "s": RuleCategory.SHORT_NAME,
    "p": RuleCategory.PARTIAL,
    "u": RuleCategory.USERNAME,
}


def describe_process(process: ObservedProcess) -> str:
    """Multi-line description of a recorded process."""
    lines = [process.executable_hash]
    if process.short_name:
        lines.append(f"  Short name: {process.short_name}")
    if process.full_path:
        lines.append(f"  Full path:  {process.full_path}")
    if process.usernames:
        lines.append("  Recorded users:")
        lines.extend(f"    {name}" for name in process.usernames)
    if process.parent_names:
        lines.append("  Recorded parent processes:")
        lines.extend(f"    {name}" for name in process.parent_names)
    return "\n".join(lines)


class ConfigurationSession:
    """
    Walks recorded processes and services that no rule covers.

    Items are checked against the rules when they are reached, so a rule
    added for one process (a short name or partial rule, say) also covers
    the items after it. When the session finishes with at least one new
    rule it raises the store's ``changes_made`` flag, which makes a running
    monitor re-apply rules to every process.
    """

    def __init__(self, store: RuleStore, engine: RuleEngine | None = None) -> None:
        self._store = store
        self._engine = engine if engine is not None else RuleEngine(store)
        self._processes: deque[ObservedProcess] = deque(store.observed_processes())
        self._services: deque[str] = deque(store.observed_service_names())
        self._changes_made = False
        self.power_scripts_configured = bool(
            store.get_low_power_script() and store.get_high_power_script()
        )

    @property
    def changes_made(self) -> bool:
        return self._changes_made

    def priority_keys(self, for_service: bool = False) -> dict[str, Priority | None]:
        """Keys the priority prompt accepts."""
        keys = dict(PRIORITY_KEYS)
        if for_service or not self.power_scripts_configured:
            del keys["p"]
        return keys

    def next_item(self) -> ObservedProcess | str | None:
        """
        Next process record or service name that needs a rule.

        Returns:
            An ObservedProcess, a service name, or None when nothing is left.
        """
        while self._processes:
            process = self._processes.popleft()
            decision = self._engine.resolve(process)
            if decision.matched:
                log.info(
                    "priority_assigned",
                    name=process.short_name,
                    priority=decision.priority.label,
                    rule=decision.source,
                )
                continue
            return process

        while self._services:
            name = self._services.popleft()
            if self._store.get_service_rule(name) is None:
                return name
        return None

    def assign_process_rule(
        self,
        process: ObservedProcess,
        priority: Priority,
        category: RuleCategory,
        partial: str | None = None,
    ) -> None:
        """
        Store a rule for a recorded process.

        Args:
            process: The record being configured.
            priority: Priority to assign.
            category: How the rule is keyed.
            partial: Substring for PARTIAL rules.

        Raises:
            ValueError: If the rule cannot be keyed as requested.
        """
        if category is RuleCategory.FULL_PATH:
            self._store.set_full_path_rule(process, priority)
        elif category is RuleCategory.SHORT_NAME:
            self._store.set_short_name_rule(process, priority)
        elif category is RuleCategory.PARTIAL:
            if not partial:
                raise ValueError("a partial rule needs a path substring")
            self._store.set_partial_rule(partial, priority)
        else:
            self._store.set_username_rule(process, priority)
        self._changes_made = True
        log.info("rule_added", category=category.value, name=process.short_name, priority=priority.label)

    def assign_service_rule(self, name: str, priority: Priority) -> None:
        """Store a rule for a service name."""
        self._store.set_service_rule(name, priority)
        self._changes_made = True
        log.info("service_rule_added", service=name, priority=priority.label)

    def finish(self) -> bool:
        """
        Signal running monitors if rules were added.

        Returns:
            Whether any rule was added in this session.
        """
        if self._changes_made:
            self._store.set_changes_made()
            log.info("changes_flagged")
        return self._changes_made
