"""Naming rules for the ubuntu-dev VM fleet."""

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from infra.exceptions import ValidationError
from infra.helpers import timestamp

VM_NAME_PREFIX = "ubuntu-dev-"
VM_NAME_PATTERN = re.compile(r"^ubuntu-dev-[0-9]{2}$")
MAX_FLEET_SIZE = 40
TEMPLATE_VM_NAME = "ubuntu-dev-01"


def generate_vm_name(number: int) -> str:
    """Return the fleet name for VM ``number`` (``3`` -> ``ubuntu-dev-03``)."""
    return f"{VM_NAME_PREFIX}{number:02d}"


def vm_number(vm_name: str) -> int:
    return int(vm_name[len(VM_NAME_PREFIX) :])


def is_valid_vm_name(vm_name: str) -> bool:
    if not vm_name or not VM_NAME_PATTERN.match(vm_name):
        return False
    return 1 <= vm_number(vm_name) <= MAX_FLEET_SIZE


def validate_vm_name(vm_name: str) -> None:
    """Raise ValidationError unless ``vm_name`` is a valid fleet name."""
    if not vm_name or not VM_NAME_PATTERN.match(vm_name):
        raise ValidationError(
            f"Invalid VM name format: {vm_name}. "
            f"Use: ubuntu-dev-XX (e.g., ubuntu-dev-05)"
        )
    if not 1 <= vm_number(vm_name) <= MAX_FLEET_SIZE:
        raise ValidationError(
            f"VM number out of range: {vm_name}. "
            f"Supported range is 01 to {MAX_FLEET_SIZE}"
        )


def parse_bulk_range(start: str, end: str) -> Tuple[int, int]:
    """Validate a bulk provisioning range given as strings.

    Raises:
        ValidationError: If either bound is not a positive integer, the range
            is reversed, or ``end`` exceeds the supported fleet size
    """
    if not str(start).isdigit() or not str(end).isdigit():
        raise ValidationError("Start and end must be numbers")
    first, last = int(start), int(end)
    if first < 1:
        raise ValidationError("Start number must be at least 1")
    if first > last:
        raise ValidationError("Start number must be less than or equal to end number")
    if last > MAX_FLEET_SIZE:
        raise ValidationError(f"Maximum supported VMs is {MAX_FLEET_SIZE}")
    return first, last


def vm_resource_name(vm_name: str, config: Dict[str, Any]) -> str:
    """Azure resource name of a VM.

    Fleet names (``ubuntu-dev-NN``) are prefixed with the environment's
    resource prefix; any other name (role VMs from the manifest) is already
    the Azure resource name and is returned unchanged.
    """
    if VM_NAME_PATTERN.match(vm_name):
        return f"{config['RESOURCE_PREFIX']}-{vm_name}"
    return vm_name


def deployment_name(prefix: str, now: Optional[datetime] = None) -> str:
    return f"{prefix}-{timestamp(now)}"
