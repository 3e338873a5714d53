"""Persistent rule store for procprio, kept in a sqlite database.

The store is shared between the monitor and configuration sessions, which
run as separate processes. The only coordination between them is the
``changes_made`` setting.
"""

import sqlite3
import time
from pathlib import Path

from procprio.models import ObservedProcess, Priority, ProcessIdentity, RuleCategory

SCHEMA = """
CREATE TABLE IF NOT EXISTS processes (
    hash TEXT PRIMARY KEY,
    full_path TEXT NOT NULL,
    short_name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS process_users (
    hash TEXT NOT NULL,
    user_id TEXT NOT NULL,
    last_seen INTEGER NOT NULL,
    PRIMARY KEY (hash, user_id)
);
CREATE TABLE IF NOT EXISTS process_parents (
    hash TEXT NOT NULL,
    parent_hash TEXT NOT NULL,
    parent_path TEXT NOT NULL,
    parent_name TEXT NOT NULL,
    last_seen INTEGER NOT NULL,
    PRIMARY KEY (hash, parent_hash)
);
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    username TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS services (
    name TEXT PRIMARY KEY,
    last_seen INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS rules (
    category TEXT NOT NULL,
    key TEXT NOT NULL,
    pattern TEXT NOT NULL,
    priority INTEGER NOT NULL,
    PRIMARY KEY (category, key)
);
CREATE TABLE IF NOT EXISTS service_rules (
    name TEXT PRIMARY KEY,
    priority INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS process_options (
    hash TEXT PRIMARY KEY,
    launch_script TEXT,
    affinity TEXT,
    keep_high INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS settings (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

CHANGES_MADE = "changes_made"
LOW_POWER_SCRIPT = "low_power_script"
HIGH_POWER_SCRIPT = "high_power_script"


class RuleStore:
    """
    Rules, observation records and settings backed by sqlite3.

    Rule keys per category:
        FULL_PATH: executable hash.
        SHORT_NAME: short name, matched exactly.
        PARTIAL: lower-cased substring; the text as entered is kept for display.
        USERNAME: owning user identifier.

    Writing a rule for an existing (category, key) pair replaces its
    priority and keeps its position, so partial rules are visited in the
    order they were first created.
    """

    def __init__(self, path: Path | str = ":memory:") -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = str(path)
        self._conn = sqlite3.connect(self._path, check_same_thread=False, timeout=5.0)
        self._conn.executescript(SCHEMA)

    @property
    def path(self) -> str:
        """Location of the database."""
        return self._path

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # -- observation records -------------------------------------------------

    def record_process(self, identity: ProcessIdentity) -> None:
        """Record a resolved process and the users it was seen running as."""
        now = int(time.time())
        with self._conn:
            self._conn.execute(
                "INSERT INTO processes (hash, full_path, short_name) VALUES (?, ?, ?) "
                "ON CONFLICT(hash) DO UPDATE SET full_path = excluded.full_path, "
                "short_name = excluded.short_name",
                (identity.executable_hash, identity.full_path, identity.short_name),
            )
            self._conn.executemany(
                "INSERT INTO process_users (hash, user_id, last_seen) VALUES (?, ?, ?) "
                "ON CONFLICT(hash, user_id) DO UPDATE SET last_seen = excluded.last_seen",
                [(identity.executable_hash, user_id, now) for user_id in sorted(identity.owning_user_ids)],
            )
            if identity.username and len(identity.owning_user_ids) == 1:
                (user_id,) = identity.owning_user_ids
                self._conn.execute(
                    "INSERT INTO users (user_id, username) VALUES (?, ?) "
                    "ON CONFLICT(user_id) DO UPDATE SET username = excluded.username",
                    (user_id, identity.username),
                )

    def record_parent(self, identity: ProcessIdentity, parent: ProcessIdentity) -> None:
        """Link a process record to the process that started it."""
        with self._conn:
            self._conn.execute(
                "INSERT INTO process_parents (hash, parent_hash, parent_path, parent_name, last_seen) "
                "VALUES (?, ?, ?, ?, ?) ON CONFLICT(hash, parent_hash) DO UPDATE SET "
                "parent_path = excluded.parent_path, parent_name = excluded.parent_name, "
                "last_seen = excluded.last_seen",
                (
                    identity.executable_hash,
                    parent.executable_hash,
                    parent.full_path,
                    parent.short_name,
                    int(time.time()),
                ),
            )

    def record_services(self, names: list[str] | tuple[str, ...]) -> None:
        """Record service names seen inside a service host."""
        now = int(time.time())
        with self._conn:
            self._conn.executemany(
                "INSERT INTO services (name, last_seen) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET last_seen = excluded.last_seen",
                [(name, now) for name in names],
            )

    def observed_processes(self) -> list[ObservedProcess]:
        """All recorded processes, in the order they were first recorded."""
        processes = []
        rows = self._conn.execute(
            "SELECT hash, full_path, short_name FROM processes ORDER BY rowid"
        ).fetchall()
        for hash_, full_path, name in rows:
            users = self._conn.execute(
                "SELECT pu.user_id, u.username FROM process_users pu "
                "LEFT JOIN users u ON u.user_id = pu.user_id "
                "WHERE pu.hash = ? ORDER BY pu.user_id",
                (hash_,),
            ).fetchall()
            parents = self._conn.execute(
                "SELECT parent_name FROM process_parents WHERE hash = ? AND parent_name != '' "
                "ORDER BY rowid",
                (hash_,),
            ).fetchall()
            processes.append(
                ObservedProcess(
                    executable_hash=hash_,
                    short_name=name,
                    full_path=full_path,
                    owning_user_ids=frozenset(user_id for user_id, _ in users),
                    usernames=tuple(username or user_id for user_id, username in users),
                    parent_names=tuple(row[0] for row in parents),
                )
            )
        return processes

    def observed_service_names(self) -> list[str]:
        """All recorded service names, in the order they were first seen."""
        return [row[0] for row in self._conn.execute("SELECT name FROM services ORDER BY rowid")]

    def username(self, user_id: str) -> str | None:
        """Recorded account name for a user identifier."""
        row = self._conn.execute("SELECT username FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return row[0] if row else None

    # -- rules ---------------------------------------------------------------

    def get_rule(self, category: RuleCategory, key: str) -> Priority | None:
        """Priority stored under an exact key."""
        if category is RuleCategory.PARTIAL:
            key = key.lower()
        row = self._conn.execute(
            "SELECT priority FROM rules WHERE category = ? AND key = ?",
            (category.value, key),
        ).fetchone()
        return Priority(row[0]) if row else None

    def set_rule(self, category: RuleCategory, key: str, priority: Priority) -> None:
        """
        Store a rule, replacing any rule with the same category and key.

        Raises:
            ValueError: If the key is empty.
        """
        if not key:
            raise ValueError("rule key must not be empty")
        pattern = key
        if category is RuleCategory.PARTIAL:
            key = key.lower()
        with self._conn:
            self._conn.execute(
                "INSERT INTO rules (category, key, pattern, priority) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(category, key) DO UPDATE SET pattern = excluded.pattern, "
                "priority = excluded.priority",
                (category.value, key, pattern, int(priority)),
            )

    def partial_rules(self) -> list[tuple[str, Priority]]:
        """Partial rules as (lower-cased substring, priority) in creation order."""
        rows = self._conn.execute(
            "SELECT key, priority FROM rules WHERE category = ? ORDER BY rowid",
            (RuleCategory.PARTIAL.value,),
        )
        return [(key, Priority(priority)) for key, priority in rows]

    def set_full_path_rule(self, process: ObservedProcess | ProcessIdentity, priority: Priority) -> None:
        """Rule for one executable, keyed by its hash."""
        self.set_rule(RuleCategory.FULL_PATH, process.executable_hash, priority)

    def set_short_name_rule(self, process: ObservedProcess | ProcessIdentity, priority: Priority) -> None:
        """Rule for every executable with the same short name."""
        self.set_rule(RuleCategory.SHORT_NAME, process.short_name, priority)

    def set_partial_rule(self, substring: str, priority: Priority) -> None:
        """Rule for every executable whose path contains ``substring``."""
        self.set_rule(RuleCategory.PARTIAL, substring, priority)

    def set_username_rule(self, process: ObservedProcess | ProcessIdentity, priority: Priority) -> None:
        """
        Rule for every process run by the process's single owning user.

        Raises:
            ValueError: If the process was not seen under exactly one user.
        """
        if len(process.owning_user_ids) != 1:
            raise ValueError("a username rule needs exactly one recorded user")
        (user_id,) = process.owning_user_ids
        self.set_rule(RuleCategory.USERNAME, user_id, priority)

    def get_service_rule(self, name: str) -> Priority | None:
        """Priority stored for a service name."""
        row = self._conn.execute("SELECT priority FROM service_rules WHERE name = ?", (name,)).fetchone()
        return Priority(row[0]) if row else None

    def set_service_rule(self, name: str, priority: Priority) -> None:
        """Store a service rule, replacing any previous one."""
        with self._conn:
            self._conn.execute(
                "INSERT INTO service_rules (name, priority) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET priority = excluded.priority",
                (name, int(priority)),
            )

    # -- per-process options -------------------------------------------------

    def _option(self, executable_hash: str, column: str):
        row = self._conn.execute(
            f"SELECT {column} FROM process_options WHERE hash = ?", (executable_hash,)
        ).fetchone()
        return row[0] if row else None

    def _set_option(self, executable_hash: str, column: str, value) -> None:
        with self._conn:
            self._conn.execute(
                f"INSERT INTO process_options (hash, {column}) VALUES (?, ?) "
                f"ON CONFLICT(hash) DO UPDATE SET {column} = excluded.{column}",
                (executable_hash, value),
            )

    def get_launch_script(self, executable_hash: str) -> str | None:
        """Command to run when the executable starts."""
        return self._option(executable_hash, "launch_script") or None

    def set_launch_script(self, executable_hash: str, command: str | None) -> None:
        self._set_option(executable_hash, "launch_script", command)

    def get_affinity(self, executable_hash: str) -> list[int] | None:
        """Logical CPUs the executable should be restricted to."""
        value = self._option(executable_hash, "affinity")
        if not value:
            return None
        return [int(cpu) for cpu in value.split(",")]

    def set_affinity(self, executable_hash: str, cpus: list[int] | None) -> None:
        self._set_option(executable_hash, "affinity", ",".join(str(cpu) for cpu in cpus) if cpus else None)

    def get_keep_high(self, executable_hash: str) -> bool:
        """Whether the executable is held at High priority while it runs."""
        return bool(self._option(executable_hash, "keep_high"))

    def set_keep_high(self, executable_hash: str, keep_high: bool) -> None:
        self._set_option(executable_hash, "keep_high", int(keep_high))

    # -- settings ------------------------------------------------------------

    def _setting(self, name: str) -> str | None:
        row = self._conn.execute("SELECT value FROM settings WHERE name = ?", (name,)).fetchone()
        return row[0] if row else None

    def _set_setting(self, name: str, value: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO settings (name, value) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
                (name, value),
            )

    def get_changes_made(self) -> bool:
        """Whether a configuration session changed the rules since the last clear."""
        return self._setting(CHANGES_MADE) == "1"

    def set_changes_made(self) -> None:
        self._set_setting(CHANGES_MADE, "1")

    def clear_changes_made(self) -> None:
        self._set_setting(CHANGES_MADE, "0")

    def get_low_power_script(self) -> str | None:
        """Script run when no high-power process is left; None if unset."""
        return self._setting(LOW_POWER_SCRIPT) or None

    def get_high_power_script(self) -> str | None:
        """Script run when the first high-power process starts; None if unset."""
        return self._setting(HIGH_POWER_SCRIPT) or None

    def set_power_scripts(self, low: str | None, high: str | None) -> None:
        self._set_setting(LOW_POWER_SCRIPT, low or "")
        self._set_setting(HIGH_POWER_SCRIPT, high or "")
