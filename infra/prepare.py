"""Prepare Terraform variable files before the first deployment."""

import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import click
import ipaddr
import requests

import infra.azcli as azcli
import infra.helpers as helpers
from infra.utils import mask_secret, tfvar_read, update_tfvars_file

logger = logging.getLogger(__name__)

IP_LOOKUP_URL = "https://api.ipify.org"
STORAGE_KEY_PENDING = "WILL_BE_CREATED"
SSH_KEY_PATH = Path("~/.ssh/id_ed25519.pub")

# Values shipped in the .example files that still need replacing
PLACEHOLDERS = {
    "storage_access_key": "your_storage_access_key_here",
    "laptop_ip": "YOUR_LAPTOP_IP",
}


def copy_example_files(tf_dir: Union[str, Path], var_files: List[str]) -> List[str]:
    """Create each var file from its ``.example`` sibling when missing."""
    created = []
    for name in var_files:
        dest = Path(tf_dir) / name
        source = Path(tf_dir) / f"{name}.example"
        if dest.exists():
            helpers.print_info(f"{name} already exists, skipping")
        elif source.exists():
            shutil.copyfile(source, dest)
            helpers.print_success(f"Created {name} from {source.name}")
            created.append(name)
        else:
            helpers.print_warning(f"No example file for {name}")
    return created


def get_storage_key(config: Dict[str, Any]) -> str:
    account = config["STORAGE_ACCOUNT"]
    key = azcli.storage_account_key(config["RESOURCE_GROUP"], account)
    if key:
        helpers.print_success(f"Storage key retrieved for {account} ({mask_secret(key)})")
        return key
    helpers.print_warning(
        f"Storage account {account} not found; it will be created by Terraform"
    )
    return STORAGE_KEY_PENDING


def get_current_ip(timeout: int = 10) -> Optional[str]:
    """Public IPv4/IPv6 address of this workstation, or None if undetectable."""
    try:
        response = requests.get(IP_LOOKUP_URL, timeout=timeout)
        response.raise_for_status()
        address = ipaddr.IPAddress(response.text.strip())
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"IP detection failed: {e}")
        return None
    return str(address)


def _needs_value(current: Any, placeholder: str) -> bool:
    return not current or current == placeholder


def update_terraform_tfvars(tfvars_path: Union[str, Path], storage_key: str, laptop_ip: Optional[str]) -> Dict[str, str]:
    """Fill placeholder values in ``terraform.tfvars``; existing values are kept."""
    current = tfvar_read(tfvars_path)
    updates = {}
    if storage_key != STORAGE_KEY_PENDING and _needs_value(
        current.get("storage_access_key"), PLACEHOLDERS["storage_access_key"]
    ):
        updates["storage_access_key"] = storage_key
    elif storage_key == STORAGE_KEY_PENDING:
        helpers.print_warning(
            "Skipping storage_access_key (add it after the storage account is created)"
        )
    if laptop_ip and _needs_value(current.get("laptop_ip"), PLACEHOLDERS["laptop_ip"]):
        updates["laptop_ip"] = laptop_ip
    if updates:
        update_tfvars_file(tfvars_path, updates)
        helpers.print_success(f"Updated {', '.join(sorted(updates))} in {tfvars_path}")
    else:
        helpers.print_info(f"No placeholder values to update in {tfvars_path}")
    return updates


def show_ssh_key_instructions(key_path: Optional[Union[str, Path]] = None) -> None:
    path = Path(key_path or SSH_KEY_PATH).expanduser()
    if path.exists():
        helpers.print_info(f"SSH key found: {path}")
        click.echo("Add this public key to the VM var files (ssh_public_key):")
        click.echo(path.read_text().strip())
    else:
        helpers.print_warning(f"SSH key not found: {path}")
        click.echo("Generate one with:")
        click.echo('  ssh-keygen -t ed25519 -C "you@example.com"')


def prepare_deployment(
    tf_dir: Union[str, Path], var_files: List[str], config: Dict[str, Any]
) -> int:
    tf_dir = Path(tf_dir)
    helpers.print_header("Preparing Terraform variable files")
    copy_example_files(tf_dir, var_files)
    tfvars = tf_dir / "terraform.tfvars"
    if not tfvars.exists():
        helpers.print_error(f"{tfvars} not found and no example to copy from")
        return 1

    storage_key = get_storage_key(config)
    laptop_ip = get_current_ip()
    if laptop_ip:
        helpers.print_info(f"Your current IP: {laptop_ip}")
    else:
        helpers.print_warning("Could not detect IP automatically; set laptop_ip manually")
    update_terraform_tfvars(tfvars, storage_key, laptop_ip)

    helpers.print_warning("Manual updates still needed:")
    click.echo("  1. github_pat - Your GitHub Personal Access Token")
    click.echo("  2. wifi_network_range - Your WiFi network range (optional)")
    click.echo(f"Edit file: {tfvars}\n")
    show_ssh_key_instructions()
    helpers.print_success("Preparation complete. Next: beeuxctl tf plan")
    return 0
