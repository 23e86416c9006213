"""Terraform variable file utilities.

Reads ``.tfvars`` files (JSON or HCL) and rewrites scalar assignments in
place, which is how generated values such as the storage access key and the
workstation IP are injected before a plan.
"""

import json
import re
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, Union

import hcl2

from infra.exceptions import TerraformError


def tfvar_read(filepath: Union[str, Path]) -> Dict[str, Any]:
    """Read and parse a Terraform variable file (.tfvars).

    Args:
        filepath: Path to .tfvars file (HCL or JSON format)

    Returns:
        dict: Parsed variable definitions

    Raises:
        FileNotFoundError: If file does not exist
        TerraformError: If file cannot be parsed
    """
    if not Path(filepath).exists():
        raise FileNotFoundError(f"Variable file not found: {filepath}")

    # Try parsing as JSON first
    with suppress(json.JSONDecodeError):
        with open(filepath, "r") as f:
            return json.load(f)

    try:
        with open(filepath, "r") as f:
            parsed_data = hcl2.load(f)
    except Exception as e:
        raise TerraformError(
            f"Failed to parse variable file: {filepath}",
            context={"error": str(e), "filepath": str(filepath)},
        )
    # HCL2 parser wraps single values in lists and keeps quotes on strings
    if isinstance(parsed_data, dict):
        return {
            k: _unquote(v[0] if isinstance(v, list) and len(v) == 1 else v)
            for k, v in parsed_data.items()
        }
    return parsed_data


def _unquote(value: Any) -> Any:
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def set_tfvar(text: str, name: str, value: str) -> str:
    """Replace the value of a top-level string assignment ``name = "..."``.

    The assignment is appended when ``name`` is not present. Only the first
    occurrence is changed and surrounding formatting is preserved.
    """
    pattern = re.compile(rf'^(\s*{re.escape(name)}\s*=\s*)"[^"\n]*"', re.MULTILINE)
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    if pattern.search(text):
        return pattern.sub(lambda m: f'{m.group(1)}"{escaped}"', text, count=1)
    if text and not text.endswith("\n"):
        text += "\n"
    return f'{text}{name} = "{escaped}"\n'


def update_tfvars_file(filepath: Union[str, Path], values: Dict[str, str]) -> None:
    """Apply ``set_tfvar`` for every item in ``values`` and save the file."""
    path = Path(filepath)
    text = path.read_text()
    for name, value in values.items():
        text = set_tfvar(text, name, value)
    path.write_text(text)
