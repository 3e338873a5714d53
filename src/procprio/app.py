"""procprio - command line entry point and configuration UI."""

import argparse

import structlog
from textual import events
from textual.app import App, ComposeResult
from textual.widgets import Footer, Input, Static

from procprio.config import DB_PATH, LOG_LEVEL, LOG_PATH
from procprio.logconfig import configure_logging
from procprio.models import ObservedProcess, Priority, RuleCategory
from procprio.monitor import PriorityMonitor
from procprio.session import CATEGORY_KEYS, ConfigurationSession, describe_process
from procprio.store import RuleStore

log = structlog.get_logger()

PRIORITY_LABELS = {
    "i": "(I)dle",
    "b": "(B)elow normal",
    "n": "(N)ormal",
    "a": "(A)bove normal",
    "h": "(H)igh",
    "p": "High with high-(p)ower script",
    "c": "(C)onditional idle",
    "d": "(D)efault/Ignore",
    "s": "(S)kip",
}

CATEGORY_PROMPT = "How would you like to specify priority?\n(F)ull path, (S)hort name, (P)artial match, (U)sername"


class ConfigApp(App):
    """
    Interactive rule configuration.

    Shows one unclassified process or service at a time and asks for a
    priority, then (for processes) for the kind of rule to store. Exits with
    True if any rule was added.
    """

    TITLE = "procprio"
    SUB_TITLE = "Rule configuration"

    CSS = """
    Screen {
        layout: vertical;
    }

    #item-details {
        height: auto;
        padding: 1;
        background: $surface;
    }

    #prompt {
        height: auto;
        padding: 1;
    }

    #status {
        height: auto;
        padding: 0 1;
        color: $warning;
    }
    """

    BINDINGS = [
        ("escape", "quit", "Quit"),
    ]

    AUTO_FOCUS = None

    def __init__(self, store: RuleStore) -> None:
        """Initialize the ConfigApp."""
        super().__init__()
        self.session = ConfigurationSession(store)
        self._item: ObservedProcess | str | None = None
        self._priority: Priority | None = None
        self._stage = "priority"

    @property
    def stage(self) -> str:
        """Current prompt: 'priority', 'category', 'partial' or 'done'."""
        return self._stage

    @property
    def current_item(self) -> ObservedProcess | str | None:
        return self._item

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Static("", id="item-details", markup=False)
        yield Static("", id="prompt", markup=False)
        yield Input(placeholder="Partial path", id="partial-input")
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        """Show the first item that needs a rule."""
        self.query_one("#partial-input", Input).display = False
        self.set_focus(None)
        self._advance()

    def _advance(self) -> None:
        self._priority = None
        self._item = self.session.next_item()
        self._set_status("")
        if self._item is None:
            self._stage = "done"
            self._show("Nothing left to configure.", "")
            self.exit(self.session.finish())
            return

        self._stage = "priority"
        if isinstance(self._item, str):
            details = f'Need to set priority for service "{self._item}"'
        else:
            details = describe_process(self._item) + "\n\nNo priority determined for this process."
        self._show(details, self._priority_prompt())

    def _priority_prompt(self) -> str:
        keys = self.session.priority_keys(for_service=isinstance(self._item, str))
        return "Which priority would you like to assign?\n" + ", ".join(PRIORITY_LABELS[key] for key in keys)

    def _show(self, details: str, prompt: str) -> None:
        self.query_one("#item-details", Static).update(details)
        self.query_one("#prompt", Static).update(prompt)

    def _set_status(self, message: str) -> None:
        self.query_one("#status", Static).update(message)

    def on_key(self, event: events.Key) -> None:
        """Handle a choice for the current prompt."""
        if any(event.key == binding[0] for binding in self.BINDINGS):
            return
        if self._stage == "priority":
            self._choose_priority(event.key.lower())
        elif self._stage == "category":
            self._choose_category(event.key.lower())

    def _choose_priority(self, key: str) -> None:
        keys = self.session.priority_keys(for_service=isinstance(self._item, str))
        if key not in keys:
            self._set_status(f"'{key}' is not one of the choices")
            return

        priority = keys[key]
        if priority is None:
            self._advance()
        elif isinstance(self._item, str):
            self.session.assign_service_rule(self._item, priority)
            self._advance()
        else:
            self._priority = priority
            self._stage = "category"
            self._set_status("")
            self.query_one("#prompt", Static).update(CATEGORY_PROMPT)

    def _choose_category(self, key: str) -> None:
        category = CATEGORY_KEYS.get(key)
        if category is None:
            self._set_status(f"'{key}' is not one of the choices")
            return

        if category is RuleCategory.PARTIAL:
            self._stage = "partial"
            self._set_status("")
            self.query_one("#prompt", Static).update("Enter partial path and press Enter")
            partial_input = self.query_one("#partial-input", Input)
            partial_input.value = ""
            partial_input.display = True
            partial_input.focus()
            return

        self._store_rule(category)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Store a partial rule once the substring is entered."""
        if self._stage != "partial":
            return
        value = event.value.strip()
        if not value:
            self._set_status("The partial path must not be empty")
            return
        event.input.display = False
        self.set_focus(None)
        self._store_rule(RuleCategory.PARTIAL, value)

    def _store_rule(self, category: RuleCategory, partial: str | None = None) -> None:
        try:
            self.session.assign_process_rule(self._item, self._priority, category, partial)
        except ValueError as e:
            self._stage = "category"
            self._set_status(str(e))
            self.query_one("#prompt", Static).update(CATEGORY_PROMPT)
            return
        self._advance()

    def action_quit(self) -> None:
        """Quit, keeping any rules added so far."""
        self.exit(self.session.finish())


def main(argv: list[str] | None = None) -> None:
    """Entry point for procprio."""
    parser = argparse.ArgumentParser(
        prog="procprio",
        description="Apply stored priority rules to running processes.",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["config"],
        help="'config' to assign rules to unclassified processes; omit to run the monitor",
    )
    args = parser.parse_args(argv)

    if args.mode == "config":
        stream = configure_logging(LOG_LEVEL, log_file=LOG_PATH)
        store = RuleStore(DB_PATH)
        try:
            changed = ConfigApp(store).run()
        finally:
            store.close()
            stream.close()
        print("Rules updated." if changed else "No changes made.")
        return

    configure_logging(LOG_LEVEL)
    store = RuleStore(DB_PATH)
    log.info("monitor_starting", db=store.path)
    monitor = PriorityMonitor(store)
    try:
        monitor.run()
    except KeyboardInterrupt:
        log.info("monitor_stopped")
    finally:
        store.close()


if __name__ == "__main__":
    main()
