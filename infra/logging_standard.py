"""Per-run log files and the shared execution registry.

Each CLI run writes ``logs/<command>-<timestamp>.log`` under the project
root and appends one pipe-delimited row to ``script-execution.registry``.
The registry answers "when did this last run, and did it succeed?".
"""

import getpass
import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import click

from infra.env_config import load_env_config

logger = logging.getLogger("infra")

REGISTRY_NAME = "script-execution.registry"
REGISTRY_FIELDS = [
    "TIMESTAMP",
    "EXECUTION_ID",
    "SCRIPT_NAME",
    "SCRIPT_PATH",
    "USER",
    "WORKING_DIR",
    "LOG_FILE",
    "EXIT_CODE",
    "DURATION",
    "ORGNM",
    "PLTNM",
    "ENVNM",
]
REGISTRY_HEADER = "|".join(REGISTRY_FIELDS)
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def find_project_root(start: Optional[Union[str, Path]] = None) -> Path:
    """Nearest directory at or above ``start`` holding the registry file."""
    start = Path(start or Path.cwd()).resolve()
    for directory in [start] + list(start.parents):
        if (directory / REGISTRY_NAME).exists():
            return directory
    return start


def setup_logging(
    script_name: str,
    project_root: Optional[Union[str, Path]] = None,
    now: Optional[datetime] = None,
    level: int = logging.DEBUG,
) -> Dict[str, Any]:
    """Attach a log file handler for this run and describe the run.

    Returns:
        dict with ``script_name``, ``execution_id``, ``log_file``,
        ``project_root``, ``start_time`` and the ``handler``
    """
    now = now or datetime.now()
    root = Path(project_root) if project_root else find_project_root()
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{script_name}-{now.strftime('%Y%m%d-%H%M%S')}.log"

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.setLevel(level)

    execution_id = f"{now.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"
    logger.info("Execution %s of %s started", execution_id, script_name)
    logger.info("Command line: %s", " ".join(sys.argv))
    return {
        "script_name": script_name,
        "execution_id": execution_id,
        "log_file": log_file,
        "project_root": root,
        "start_time": now,
        "handler": handler,
    }


def track_script_execution(
    run: Optional[Dict[str, Any]],
    exit_code: int,
    now: Optional[datetime] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """Append the finished run to the registry and close its log handler."""
    if not run:
        return None
    now = now or datetime.now()
    duration = int((now - run["start_time"]).total_seconds())
    config = load_env_config(environ)
    row = {
        "TIMESTAMP": now.strftime("%Y-%m-%d %H:%M:%S"),
        "EXECUTION_ID": run["execution_id"],
        "SCRIPT_NAME": run["script_name"],
        "SCRIPT_PATH": os.path.realpath(sys.argv[0]) if sys.argv else "",
        "USER": getpass.getuser(),
        "WORKING_DIR": os.getcwd(),
        "LOG_FILE": str(run["log_file"]),
        "EXIT_CODE": str(exit_code),
        "DURATION": f"{duration}s",
        "ORGNM": config["ORGNM"],
        "PLTNM": config["PLTNM"],
        "ENVNM": config["ENVNM"],
    }
    registry = Path(run["project_root"]) / REGISTRY_NAME
    new_file = not registry.exists() or registry.stat().st_size == 0
    with open(registry, "a") as f:
        if new_file:
            f.write(REGISTRY_HEADER + "\n")
        f.write("|".join(row[field].replace("|", "/") for field in REGISTRY_FIELDS) + "\n")

    logger.info("Execution %s finished with exit code %s in %s", run["execution_id"], exit_code, row["DURATION"])
    handler = run.get("handler")
    if handler is not None:
        logger.removeHandler(handler)
        handler.close()
    return registry


def read_registry(project_root: Optional[Union[str, Path]] = None) -> List[Dict[str, str]]:
    registry = Path(project_root or find_project_root()) / REGISTRY_NAME
    if not registry.exists():
        return []
    entries = []
    with open(registry, "r") as f:
        for line in f:
            line = line.rstrip("\n")
            if not line or line == REGISTRY_HEADER:
                continue
            values = line.split("|")
            if len(values) != len(REGISTRY_FIELDS):
                logger.debug("Skipping malformed registry line: %s", line)
                continue
            entries.append(dict(zip(REGISTRY_FIELDS, values)))
    return entries


def get_last_execution(entries: List[Dict[str, str]], script_name: str) -> Optional[Dict[str, str]]:
    matches = [entry for entry in entries if entry["SCRIPT_NAME"] == script_name]
    return matches[-1] if matches else None


def check_last_success(entries: List[Dict[str, str]], script_name: str) -> bool:
    last = get_last_execution(entries, script_name)
    return bool(last) and last["EXIT_CODE"] == "0"


def get_execution_count(entries: List[Dict[str, str]], script_name: Optional[str] = None) -> int:
    if script_name is None:
        return len(entries)
    return sum(1 for entry in entries if entry["SCRIPT_NAME"] == script_name)


def show_execution_history(
    entries: List[Dict[str, str]], script_name: Optional[str] = None, limit: int = 10
) -> None:
    if script_name:
        entries = [entry for entry in entries if entry["SCRIPT_NAME"] == script_name]
    if not entries:
        click.echo("No executions recorded")
        return
    click.echo(click.style(f"{'TIMESTAMP':<20} {'COMMAND':<16} {'EXIT':<5} {'DURATION':<9} USER", bold=True))
    for entry in entries[max(len(entries) - limit, 0):]:
        colour = "green" if entry["EXIT_CODE"] == "0" else "red"
        click.echo(
            f"{entry['TIMESTAMP']:<20} {entry['SCRIPT_NAME']:<16} "
            + click.style(f"{entry['EXIT_CODE']:<5}", fg=colour)
            + f" {entry['DURATION']:<9} {entry['USER']}"
        )
