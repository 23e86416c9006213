"""Thin wrapper around the Azure CLI.

Every Azure control plane call in this project goes through ``run_az`` so
that tests can substitute ``subprocess.run`` in one place.
"""

import json
import logging
import subprocess
from typing import Any, Dict, List, Optional

from infra.exceptions import AzureCliError

logger = logging.getLogger(__name__)


def run_az(args: List[str], as_json: bool = True, check: bool = True) -> Any:
    """Run an ``az`` command and return its output.

    Args:
        args: Arguments after ``az`` (e.g. ``["vm", "list", "-g", "rg"]``)
        as_json: Append ``--output json`` unless an output flag is present,
            and parse stdout as JSON
        check: Raise AzureCliError on a non-zero exit code

    Returns:
        Parsed JSON (None for empty output) when ``as_json`` is set,
        otherwise stripped stdout text

    Raises:
        AzureCliError: If the command exits non-zero and ``check`` is set,
            or if JSON output cannot be decoded
    """
    cmd = ["az"] + list(args)
    if as_json and "--output" not in cmd and "-o" not in cmd:
        cmd += ["--output", "json"]
    logger.debug("Running: %s", " ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.debug("az exited %s: %s", result.returncode, stderr)
        if check:
            raise AzureCliError(
                f"Azure CLI command failed: az {' '.join(args[:3])}",
                command=cmd,
                returncode=result.returncode,
                stderr=stderr,
                context={"stderr": stderr} if stderr else None,
            )
        return None
    stdout = result.stdout or ""
    if not as_json:
        return stdout.strip()
    if not stdout.strip():
        return None
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise AzureCliError(
            "Could not decode Azure CLI JSON output",
            command=cmd,
            returncode=result.returncode,
            context={"error": str(e)},
        )


def az_succeeds(args: List[str]) -> bool:
    """Return True when the ``az`` command exits zero, discarding output."""
    cmd = ["az"] + list(args) + ["--output", "none"]
    logger.debug("Checking: %s", " ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True)
    return result.returncode == 0


def set_subscription(subscription: str) -> None:
    run_az(["account", "set", "--subscription", subscription], as_json=False)


def resource_group_exists(name: str) -> bool:
    return az_succeeds(["group", "show", "--name", name])


def create_resource_group(name: str, location: str, tags: Dict[str, str]) -> Any:
    args = ["group", "create", "--name", name, "--location", location]
    if tags:
        args += ["--tags"] + [f"{k}={v}" for k, v in tags.items()]
    return run_az(args)


def storage_account_key(resource_group: str, account: str) -> Optional[str]:
    """Return the first access key of ``account`` or None if unavailable."""
    key = run_az(
        [
            "storage",
            "account",
            "keys",
            "list",
            "--resource-group",
            resource_group,
            "--account-name",
            account,
            "--query",
            "[0].value",
            "--output",
            "tsv",
        ],
        as_json=False,
        check=False,
    )
    return key or None
