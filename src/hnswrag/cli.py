"""
Interactive command shell over a :class:`LifecycleManager`.

Commands run one at a time on a persistent event loop. Ctrl+C while a
command runs cancels just that command; Ctrl+C or EOF at the prompt ends
the session.
"""

import asyncio
import sys
from collections.abc import Callable, Coroutine
from typing import Any, TextIO

from .core.errors import OperationResult
from .core.lifecycle import LifecycleManager
from .core.state_machine import IndexStatus
from .observability.logging import clear_op_id, get_logger, new_op_id

logger = get_logger(__name__)

# Menu numbers accepted in place of command names
ALIASES = {"1": "index", "2": "load", "3": "query", "4": "delete", "5": "exit"}
COMMANDS = ("index", "load", "query", "delete", "status", "help", "exit")

HELP_TEXT = """\
Commands:
  1 | index [source]    fetch a URL or file, chunk, embed and persist it
  2 | load              load the persisted index
  3 | query <question>  answer a question from the loaded index
  4 | delete            delete the persisted index
      status            show index state
      help              show this help
  5 | exit              quit"""


def parse_command(line: str) -> tuple[str | None, str | None]:
    """Split a line into ``(command, argument)``.

    Unknown commands come back as ``("unknown", <word>)``; blank lines as
    ``(None, None)``.
    """
    line = line.strip()
    if not line:
        return None, None
    word, _, rest = line.partition(" ")
    command = ALIASES.get(word, word.lower())
    if command not in COMMANDS:
        return "unknown", word
    return command, rest.strip() or None


class Shell:
    """Read-dispatch-print loop."""

    def __init__(
        self,
        lifecycle: LifecycleManager,
        input_fn: Callable[[str], str] = input,
        out: TextIO | None = None,
    ):
        self.lifecycle = lifecycle
        self.input_fn = input_fn
        self.out = out or sys.stdout

    def echo(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    def banner(self) -> str:
        status = self.lifecycle.index_status
        label = "READY" if status is IndexStatus.READY else "NOT LOADED"
        return f"[index: {label}]"

    def run(self) -> int:
        """Run until ``exit``, EOF or Ctrl+C at the prompt. Returns the exit status."""
        with asyncio.Runner() as runner:
            try:
                self.dispatch(runner, "load", None)
                while True:
                    self.echo(self.banner())
                    try:
                        line = self.input_fn("> ")
                    except (EOFError, KeyboardInterrupt):
                        self.echo()
                        break

                    command, argument = parse_command(line)
                    if command is None:
                        continue
                    if command == "exit":
                        break
                    if command == "help":
                        self.echo(HELP_TEXT)
                        continue
                    if command == "unknown":
                        self.echo(f"Unknown command: {argument}. Type 'help' for commands.")
                        continue

                    if command in ("index", "query") and argument is None:
                        try:
                            argument = self._prompt_argument(command)
                        except (EOFError, KeyboardInterrupt):
                            self.echo()
                            continue
                        if command == "query" and not argument:
                            self.echo("No question given.")
                            continue

                    self.dispatch(runner, command, argument)
            finally:
                runner.run(self.lifecycle.close())
        self.echo("Goodbye.")
        return 0

    def _prompt_argument(self, command: str) -> str | None:
        if command == "index":
            source = self.input_fn(
                f"Source URL or path [{self.lifecycle.default_source}]: "
            ).strip()
            return source or None
        return self.input_fn("Question: ").strip()

    def _coroutine(self, command: str, argument: str | None) -> Coroutine[Any, Any, OperationResult]:
        if command == "index":
            return self.lifecycle.build(argument)
        if command == "load":
            return self.lifecycle.load()
        if command == "query":
            return self.lifecycle.query(argument or "")
        if command == "delete":
            return self.lifecycle.delete()
        if command == "status":
            return self.lifecycle.status()
        raise ValueError(f"not a lifecycle command: {command}")

    def dispatch(self, runner: asyncio.Runner, command: str, argument: str | None) -> OperationResult | None:
        """Run one command to completion, or until Ctrl+C cancels it."""
        new_op_id()
        logger.debug("Dispatching command", command=command)
        try:
            result = runner.run(self._coroutine(command, argument))
        except KeyboardInterrupt:
            self.echo(f"{command} cancelled.")
            return None
        finally:
            clear_op_id()
        self.render(result)
        return result

    def render(self, result: OperationResult) -> None:
        if not result.ok:
            kind = result.kind.value if result.kind else "error"
            self.echo(f"Error [{kind}]: {result.message}")
            return

        if result.operation == "query":
            self.echo(result.value)
        elif result.operation == "status":
            info = result.value
            self.echo(f"status:  {info['status']}")
            self.echo(f"entries: {info['entries']}")
            if info["dim"] is not None:
                self.echo(f"dim:     {info['dim']}")
            on_disk = "present" if info["bundle_exists"] else "absent"
            self.echo(f"bundle:  {info['bundle_path']} ({on_disk})")
        elif result.operation == "load" and not result.metadata.get("found", True):
            self.echo(f"{result.message}. Use 'index' to build one.")
        else:
            self.echo(result.message)
