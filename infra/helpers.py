"""Console output and confirmation helpers shared by every command.

Messages are written with ``click.echo`` so they can be captured by
``CliRunner`` in tests, and mirrored to the ``infra`` logger so the
per-run log file holds the same narrative as the terminal.
"""

import logging
import re
import sys
from datetime import datetime
from typing import Optional

import click

logger = logging.getLogger("infra")
# Console output goes through click; records reach handlers set up per run
logger.addHandler(logging.NullHandler())

SEPARATOR = "=" * 77
RULE = "─" * 49
YES_PATTERN = re.compile(r"^[Yy][Ee][Ss]$")


def print_header(title: str) -> None:
    click.echo()
    click.echo(click.style(SEPARATOR, fg="blue"))
    click.echo(click.style(title, fg="blue", bold=True))
    click.echo(click.style(SEPARATOR, fg="blue"))
    click.echo()
    logger.info("=== %s ===", title)


def print_info(message: str) -> None:
    click.echo(click.style("[INFO]", fg="blue") + f" {message}")
    logger.info(message)


def print_success(message: str) -> None:
    click.echo(click.style("[SUCCESS]", fg="green") + f" {message}")
    logger.info(message)


def print_warning(message: str) -> None:
    click.echo(click.style("[WARNING]", fg="yellow") + f" {message}")
    logger.warning(message)


def print_error(message: str) -> None:
    click.echo(click.style("[ERROR]", fg="red", bold=True) + f" {message}")
    logger.error(message)


def print_detail(label: str, value) -> None:
    """Print one aligned ``label: value`` line of a summary block."""
    click.echo(f"  • {label + ':':<20} {value}")


def fail(message: str, hint: Optional[str] = None, code: int = 1) -> None:
    """Print an error (and optional hint) then exit with ``code``."""
    print_error(message)
    if hint:
        print_info(hint)
    sys.exit(code)


def confirm_yes(question: str, assume_yes: bool = False) -> bool:
    """Ask a question that only a typed ``yes`` answers affirmatively.

    Args:
        question: Prompt text, ``(yes/no)`` is appended
        assume_yes: Skip the prompt and accept (``--yes`` on the CLI)

    Returns:
        True when the reply matches ``yes`` in any letter case
    """
    if assume_yes:
        return True
    reply = click.prompt(
        f"{question} (yes/no)", default="", show_default=False, prompt_suffix=": "
    )
    return bool(YES_PATTERN.match(reply.strip()))


def confirm_y(question: str, assume_yes: bool = False) -> bool:
    """Ask a ``(y/N)`` question; ``y`` or ``yes`` accepts."""
    if assume_yes:
        return True
    reply = click.prompt(
        f"{question} (y/N)", default="", show_default=False, prompt_suffix=": "
    )
    return reply.strip().lower() in ("y", "yes")


def confirm_phrase(instruction: str, phrase: str) -> bool:
    """Require ``phrase`` to be typed exactly, whitespace included."""
    click.echo(click.style(instruction, fg="yellow"))
    reply = click.prompt(">", default="", show_default=False, prompt_suffix=" ")
    return reply == phrase


def timestamp(now: Optional[datetime] = None, fmt: str = "%Y%m%d-%H%M%S") -> str:
    return (now or datetime.now()).strftime(fmt)


def resource_basename(resource_id: Optional[str]) -> str:
    """Last segment of an ARM resource ID, or empty string."""
    if not resource_id:
        return ""
    return resource_id.rstrip("/").split("/")[-1]
