"""Process lifecycle tracking and priority assignment for procprio."""

import sqlite3
import threading
import time
from queue import Queue

import psutil
import structlog

from procprio.config import MIN_POLL_INTERVAL, POLL_INTERVAL
from procprio.identity import IdentityResolutionError, IdentityResolver
from procprio.inspector import ProcessInspector
from procprio.launcher import ProcessLauncher
from procprio.models import LifecycleEvent, Priority, RunningProcess, TrackedProcess
from procprio.power import PowerModeController
from procprio.rules import RuleEngine
from procprio.store import RuleStore

log = structlog.get_logger()

# OS errors raised while changing a live process.
PROCESS_ERRORS = (psutil.Error, OSError)


class PriorityMonitor:
    """
    Polls the process list and applies priority rules to new processes.

    Each poll is one sequential pass: enumerate running processes, handle
    every new process, re-check the ones already tracked, then handle the
    processes that disappeared. Conditional idle processes are re-checked on
    every pass because something else may put them back to Normal.

    When a configuration session flags that rules changed, all tracked state
    is dropped and the next pass treats every running process as new.

    The loop runs either in the calling thread (``run``) or in a daemon
    thread (``start``/``stop``).
    """

    def __init__(
        self,
        store: RuleStore,
        inspector: ProcessInspector | None = None,
        launcher: ProcessLauncher | None = None,
        poll_rate: float = POLL_INTERVAL,
        events: Queue[LifecycleEvent] | None = None,
    ) -> None:
        """
        Initialize the PriorityMonitor.

        Args:
            store: Rule store holding rules, records and settings.
            inspector: Source of process information. Defaults to psutil.
            launcher: Starts power and launch scripts.
            poll_rate: Seconds between polls. Default 0.5s.
            events: Optional queue receiving a LifecycleEvent per start/end.
        """
        self._store = store
        self._inspector = inspector if inspector is not None else ProcessInspector()
        self._launcher = launcher if launcher is not None else ProcessLauncher()
        self._resolver = IdentityResolver(self._inspector)
        self._engine = RuleEngine(store)
        self._power = PowerModeController(self._launcher)
        self._events = events
        self._poll_rate = max(MIN_POLL_INTERVAL, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tracked: dict[int, TrackedProcess] = {}
        self._prepared = False
        self._first_pass = True

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_INTERVAL, value)

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def power(self) -> PowerModeController:
        return self._power

    @property
    def tracked(self) -> dict[int, TrackedProcess]:
        """Tracked processes by pid."""
        return dict(self._tracked)

    @property
    def conditional_idle_pids(self) -> frozenset[int]:
        return frozenset(pid for pid, tracked in self._tracked.items() if tracked.conditional_idle)

    @property
    def high_power_pids(self) -> frozenset[int]:
        return self._power.high_power_pids

    def start(self) -> None:
        """Start polling in a background thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="PriorityMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run(self) -> None:
        """Poll in the calling thread until ``stop`` is called."""
        self._stop_event.clear()
        self._poll_loop()

    def _poll_loop(self) -> None:
        """Main polling loop."""
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:
                log.exception("poll_failed")

            self._stop_event.wait(timeout=self._poll_rate)

    def reset(self) -> None:
        """Forget every tracked process; the next poll sees all processes as new."""
        self._tracked.clear()
        self._power.clear()
        self._first_pass = True

    def poll(self) -> None:
        """Run one pass over the process list."""
        if not self._prepared:
            self._prepare()
        self._check_for_rule_changes()

        previous = set(self._tracked)
        seen: set[int] = set()

        for process in self._inspector.list_processes():
            seen.add(process.pid)
            try:
                tracked = self._tracked.get(process.pid)
                if tracked is None or tracked.name != process.name:
                    self._process_started(process)
                else:
                    self._recheck(tracked)
            except Exception:
                log.exception("process_handling_failed", pid=process.pid, name=process.name)

        if self._first_pass:
            self._first_pass = False
            log.info("initial_enumeration_done", processes=len(self._tracked))
            self._power.ensure_normal()

        for pid in previous - seen:
            tracked = self._tracked.get(pid)
            if tracked is not None:
                self._process_ended(tracked)

    def _prepare(self) -> None:
        self._prepared = True
        try:
            self._store.clear_changes_made()
        except sqlite3.Error as e:
            log.error("store_error", operation="clear_changes_made", error=str(e))
        self._load_power_scripts()

    def _load_power_scripts(self) -> None:
        try:
            low = self._store.get_low_power_script()
            high = self._store.get_high_power_script()
        except sqlite3.Error as e:
            log.error("store_error", operation="load_power_scripts", error=str(e))
            return
        self._power.configure(low, high)

    def _check_for_rule_changes(self) -> None:
        try:
            if not self._store.get_changes_made():
                return
            self._store.clear_changes_made()
        except sqlite3.Error as e:
            log.error("store_error", operation="changes_made", error=str(e))
            return
        log.info("rule_changes_detected", action="reset")
        self.reset()
        self._load_power_scripts()

    def _process_started(self, process: RunningProcess) -> None:
        old = self._tracked.get(process.pid)
        if old is not None:
            # The pid was reused between two polls.
            self._process_ended(old)

        log.info("process_started", pid=process.pid, name=process.name)
        tracked = TrackedProcess(pid=process.pid, name=process.name)
        self._tracked[process.pid] = tracked

        try:
            identity = self._resolver.resolve(process)
        except IdentityResolutionError as e:
            log.warning(
                "process_unresolved",
                pid=process.pid,
                name=process.name,
                error=e.reason,
                retry=e.transient,
            )
            if e.transient:
                del self._tracked[process.pid]
            return

        tracked.identity = identity
        log.info(
            "process_identity",
            pid=identity.pid,
            path=identity.full_path,
            users=sorted(identity.owning_user_ids),
            username=identity.username or None,
            services=list(identity.hosted_service_names) if identity.hosted_service_names else None,
        )

        self._record(tracked)
        self._assign_priority(tracked)
        self._apply_options(tracked)
        self._publish("started", tracked)

    def _record(self, tracked: TrackedProcess) -> None:
        """Write observation records used by configuration sessions."""
        identity = tracked.identity
        try:
            self._store.record_process(identity)
            if identity.hosted_service_names:
                self._store.record_services(identity.hosted_service_names)
        except sqlite3.Error as e:
            log.error("record_failed", pid=tracked.pid, error=str(e))
            return

        try:
            parent = self._resolver.resolve_parent(tracked.pid)
        except IdentityResolutionError as e:
            log.info("parent_unavailable", pid=tracked.pid, error=e.reason)
            return
        if parent is None:
            return
        try:
            self._store.record_parent(identity, parent)
        except sqlite3.Error as e:
            log.error("record_failed", pid=tracked.pid, parent=parent.pid, error=str(e))

    def _assign_priority(self, tracked: TrackedProcess) -> None:
        identity = tracked.identity
        try:
            decision = self._engine.resolve(identity, identity.hosted_service_names)
        except sqlite3.Error as e:
            log.error("rule_lookup_failed", pid=tracked.pid, error=str(e))
            return

        if not decision.matched:
            log.info("no_priority_rule", pid=tracked.pid, name=tracked.name)
            return
        if decision.source.startswith("service:"):
            log.info("service_priority_override", pid=tracked.pid, rule=decision.source)

        priority = decision.priority
        tracked.priority = priority
        try:
            if priority is Priority.IGNORE:
                log.info("priority_left_alone", pid=tracked.pid, rule=decision.source)
            elif priority is Priority.CONDITIONAL_IDLE:
                tracked.conditional_idle = True
                log.info("priority_conditional_idle", pid=tracked.pid, rule=decision.source)
                self._apply_conditional_idle(tracked)
            else:
                self._inspector.set_priority(tracked.pid, priority)
                log.info("priority_set", pid=tracked.pid, priority=priority.label, rule=decision.source)
                if priority is Priority.HIGH_WITH_SCRIPT:
                    tracked.high_power = True
                    self._power.add(tracked.pid)
        except PROCESS_ERRORS as e:
            log.error("priority_set_failed", pid=tracked.pid, error=str(e))

    def _apply_options(self, tracked: TrackedProcess) -> None:
        """Apply per-executable affinity, keep-high and launch script settings."""
        executable_hash = tracked.identity.executable_hash
        try:
            cpus = self._store.get_affinity(executable_hash)
            keep_high = self._store.get_keep_high(executable_hash)
            launch_script = self._store.get_launch_script(executable_hash)
        except sqlite3.Error as e:
            log.error("store_error", operation="process_options", pid=tracked.pid, error=str(e))
            return

        if cpus:
            try:
                self._inspector.set_affinity(tracked.pid, cpus)
                log.info("affinity_set", pid=tracked.pid, cpus=cpus)
            except (*PROCESS_ERRORS, ValueError) as e:
                log.error("affinity_set_failed", pid=tracked.pid, error=str(e))

        if keep_high:
            tracked.keep_high = True
            self._hold_high(tracked)

        if launch_script:
            log.info("running_launch_script", pid=tracked.pid, command=launch_script)
            self._launcher.launch(launch_script)

    def _recheck(self, tracked: TrackedProcess) -> None:
        if tracked.conditional_idle:
            self._apply_conditional_idle(tracked)
        if tracked.keep_high:
            self._hold_high(tracked)

    def _apply_conditional_idle(self, tracked: TrackedProcess) -> None:
        """Drop the process to Idle if its class is currently Normal."""
        try:
            if self._inspector.get_priority(tracked.pid) is Priority.NORMAL:
                self._inspector.set_priority(tracked.pid, Priority.IDLE)
                log.info("conditional_idle_applied", pid=tracked.pid)
        except PROCESS_ERRORS as e:
            log.warning("conditional_idle_failed", pid=tracked.pid, error=str(e))

    def _hold_high(self, tracked: TrackedProcess) -> None:
        try:
            if self._inspector.get_priority(tracked.pid) < Priority.HIGH:
                self._inspector.set_priority(tracked.pid, Priority.HIGH)
                log.info("high_priority_restored", pid=tracked.pid)
        except PROCESS_ERRORS as e:
            log.warning("keep_high_failed", pid=tracked.pid, error=str(e))

    def _process_ended(self, tracked: TrackedProcess) -> None:
        log.info("process_ended", pid=tracked.pid, name=tracked.name)
        self._tracked.pop(tracked.pid, None)
        if tracked.high_power:
            self._power.discard(tracked.pid)
        tracked.conditional_idle = False
        self._publish("ended", tracked)

    def _publish(self, kind: str, tracked: TrackedProcess) -> None:
        if self._events is None:
            return
        self._events.put(
            LifecycleEvent(
                kind=kind,
                pid=tracked.pid,
                name=tracked.name,
                priority=tracked.priority,
                timestamp=time.time(),
            )
        )
