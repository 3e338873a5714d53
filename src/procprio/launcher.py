"""Fire-and-forget launching of external scripts."""

import shlex
import subprocess

import psutil
import structlog

log = structlog.get_logger()


def split_command(command: str) -> list[str]:
    """
    Split a stored command into program and arguments.

    The program is everything before the first space. The rest is parsed
    with shell quoting rules, so ``notify "game started"`` passes a single
    argument.

    Raises:
        ValueError: If the argument text has unbalanced quotes.
    """
    program, _, arguments = command.strip().partition(" ")
    return [program, *shlex.split(arguments)]


class ProcessLauncher:
    """Starts external programs without waiting for them."""

    def launch(self, command: str) -> bool:
        """
        Start ``command`` in the background.

        Failures are logged and reported through the return value only.

        Returns:
            True if the program was started.
        """
        command = command.strip()
        program = command.partition(" ")[0]
        if not program:
            log.warning("launch_skipped", reason="empty command")
            return False
        try:
            # CreateProcess parses the argument text itself on Windows.
            args: str | list[str] = command if psutil.WINDOWS else split_command(command)
            subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, ValueError) as e:
            log.error("launch_failed", command=command, error=str(e))
            return False
        log.info("launched", program=program, command=command)
        return True
