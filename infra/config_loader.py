"""
VM Manifest Loader for beeux-infra

Loads the declarative list of role-based VMs (name, size, static private IP,
role) and the Terraform deployment settings from YAML. One parameterised
deployment routine iterates over this manifest instead of keeping a
separate template and script per VM.

"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import ipaddr
import yaml

from infra.exceptions import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_MANIFEST = Path(__file__).parent / "config" / "vms.yml"

REQUIRED_VM_KEYS = ["name", "role", "private_ip"]

TERRAFORM_DEFAULTS = {
    "working_dir": "terraform/environments/dev",
    "expected_vm_count": 0,
    "var_files": ["terraform.tfvars"],
}


def load_manifest(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load and validate the VM manifest.

    Entries in ``vms`` are merged over the ``defaults`` block so every VM
    dict returned carries the full set of keys.

    Args:
        path: YAML file to read (defaults to the bundled ``config/vms.yml``)

    Returns:
        dict with ``subnet_cidr``, ``vms`` (list of dicts) and ``terraform``

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    manifest_path = Path(path) if path else DEFAULT_MANIFEST
    if not manifest_path.exists():
        raise ConfigurationError(
            "VM manifest not found", context={"path": str(manifest_path)}
        )
    try:
        with open(manifest_path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Could not parse VM manifest: {e}", context={"path": str(manifest_path)}
        ) from e

    defaults = raw.get("defaults") or {}
    vms = [dict(defaults, **(entry or {})) for entry in raw.get("vms") or []]
    manifest = {
        "subnet_cidr": raw.get("subnet_cidr", "10.0.1.0/24"),
        "vms": vms,
        "terraform": dict(TERRAFORM_DEFAULTS, **(raw.get("terraform") or {})),
    }
    validate_manifest(manifest)
    logger.info(f"Loaded {len(vms)} VM definitions from {manifest_path}")
    return manifest


def validate_manifest(manifest: Dict[str, Any]) -> None:
    """Check required keys, uniqueness and that private IPs sit in the subnet."""
    try:
        subnet = ipaddr.IPNetwork(manifest["subnet_cidr"])
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid subnet CIDR '{manifest['subnet_cidr']}'"
        ) from e

    seen: Dict[str, set] = {"name": set(), "role": set(), "private_ip": set()}
    for vm in manifest["vms"]:
        missing = [key for key in REQUIRED_VM_KEYS if not vm.get(key)]
        if missing:
            raise ConfigurationError(
                f"VM entry is missing required keys: {', '.join(missing)}",
                context={"entry": vm.get("name", "?")},
            )
        try:
            address = ipaddr.IPAddress(str(vm["private_ip"]))
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid private IP '{vm['private_ip']}'", context={"vm": vm["name"]}
            ) from e
        if address not in subnet:
            raise ConfigurationError(
                f"Private IP {address} is outside subnet {subnet}",
                context={"vm": vm["name"]},
            )
        for key in seen:
            value = str(vm[key])
            if value in seen[key]:
                raise ConfigurationError(
                    f"Duplicate {key} '{value}' in VM manifest"
                )
            seen[key].add(value)


def list_roles(manifest: Dict[str, Any]) -> List[str]:
    return [vm["role"] for vm in manifest["vms"]]


def get_vm_by_role(manifest: Dict[str, Any], role: str) -> Dict[str, Any]:
    """Return the manifest entry for ``role``."""
    for vm in manifest["vms"]:
        if vm["role"] == role:
            return vm
    raise ConfigurationError(
        f"Unknown VM role '{role}'. "
        f"Must be one of: {', '.join(list_roles(manifest))}"
    )


def rename_mappings(manifest: Dict[str, Any]) -> Dict[str, str]:
    """Map each VM's ``previous_name`` to its current name."""
    return {
        vm["previous_name"]: vm["name"]
        for vm in manifest["vms"]
        if vm.get("previous_name")
    }
