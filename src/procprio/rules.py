"""Priority resolution from stored rules."""

from dataclasses import dataclass

from procprio.models import ObservedProcess, Priority, ProcessIdentity, RuleCategory
from procprio.store import RuleStore


@dataclass(slots=True, frozen=True)
class RuleDecision:
    """
    Outcome of a rule lookup.

    ``priority`` is None when no rule matched; the OS priority is then left
    alone. ``source`` names what matched: a RuleCategory value or
    ``service:<name>`` when a service rule raised the result.
    """

    priority: Priority | None = None
    source: str | None = None

    @property
    def matched(self) -> bool:
        return self.priority is not None


NO_DECISION = RuleDecision()


class RuleEngine:
    """
    Resolves a priority for a process from the rules in a RuleStore.

    Process rules are tried in a fixed order and the first match wins:
    full path, short name, partial path (in rule creation order), username.
    The username rule only applies when the process has exactly one owning
    user. Service rules can then raise the result but never lower it.
    """

    def __init__(self, store: RuleStore) -> None:
        self._store = store

    def process_decision(self, process: ProcessIdentity | ObservedProcess) -> RuleDecision:
        """Decision from process rules alone."""
        priority = self._store.get_rule(RuleCategory.FULL_PATH, process.executable_hash)
        if priority is not None:
            return RuleDecision(priority, RuleCategory.FULL_PATH.value)

        priority = self._store.get_rule(RuleCategory.SHORT_NAME, process.short_name)
        if priority is not None:
            return RuleDecision(priority, RuleCategory.SHORT_NAME.value)

        full_path = process.full_path.lower()
        for substring, priority in self._store.partial_rules():
            if substring and substring in full_path:
                return RuleDecision(priority, RuleCategory.PARTIAL.value)

        if len(process.owning_user_ids) == 1:
            (user_id,) = process.owning_user_ids
            priority = self._store.get_rule(RuleCategory.USERNAME, user_id)
            if priority is not None:
                return RuleDecision(priority, RuleCategory.USERNAME.value)

        return NO_DECISION

    def resolve(
        self,
        process: ProcessIdentity | ObservedProcess,
        service_names: list[str] | tuple[str, ...] | None = None,
    ) -> RuleDecision:
        """
        Resolve the effective priority for a process and the services it hosts.

        Args:
            process: Identity or stored record to match.
            service_names: Services hosted by the process, if any.

        Returns:
            The winning decision, or NO_DECISION if nothing matched.
        """
        decision = self.process_decision(process)
        for name in service_names or ():
            priority = self._store.get_service_rule(name)
            if priority is None:
                continue
            if decision.priority is None or priority > decision.priority:
                decision = RuleDecision(priority, f"service:{name}")
        return decision

    def resolve_priority(
        self,
        process: ProcessIdentity | ObservedProcess,
        service_names: list[str] | tuple[str, ...] | None = None,
    ) -> Priority | None:
        """Shortcut for ``resolve(...).priority``."""
        return self.resolve(process, service_names).priority
