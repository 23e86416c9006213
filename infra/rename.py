"""Rename VMs' OS computer names to the current naming scheme.

Azure resource names cannot change after creation, so the VM resource keeps
its old name and only ``osProfile.computerName`` (and optionally the host
name inside the guest) is updated.
"""

import logging
from typing import Any, Dict, List

import click

import infra.azcli as azcli
import infra.helpers as helpers
import infra.remote as remote
import infra.vmops as vmops
from infra.exceptions import BeeuxError, RemoteCommandError
from infra.utils import lookup

logger = logging.getLogger(__name__)


def describe_vm(resource_group: str, name: str) -> Dict[str, Any]:
    vm = azcli.run_az(["vm", "show", "--resource-group", resource_group, "--name", name]) or {}
    details = {
        "size": lookup(vm, "hardwareProfile.vmSize", ""),
        "zone": ",".join(vm.get("zones") or []),
        "admin": lookup(vm, "osProfile.adminUsername", ""),
        "computer_name": lookup(vm, "osProfile.computerName", ""),
        "os_disk": lookup(vm, "storageProfile.osDisk.name", ""),
        "private_ip": "",
        "public_ip": "",
    }
    nic_id = lookup(vm, "networkProfile.networkInterfaces[0].id", "")
    if nic_id:
        nic = azcli.run_az(["network", "nic", "show", "--ids", nic_id]) or {}
        details["private_ip"] = lookup(nic, "ipConfigurations[0].privateIPAddress", "")
        details["public_ip"] = helpers.resource_basename(
            lookup(nic, "ipConfigurations[0].publicIPAddress.id", "")
        )
    return details


def plan_renames(resource_group: str, mappings: Dict[str, str]) -> Dict[str, str]:
    """Keep the mappings whose old VM exists, warning about the rest."""
    present = {}
    for old_name, new_name in mappings.items():
        if vmops.vm_exists(resource_group, old_name):
            present[old_name] = new_name
        else:
            helpers.print_warning(f"VM {old_name} not found in {resource_group}, skipping")
    return present


def update_computer_name(resource_group: str, name: str, computer_name: str) -> None:
    azcli.run_az(
        [
            "vm",
            "update",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--set",
            f"osProfile.computerName={computer_name}",
            "--output",
            "none",
        ],
        as_json=False,
    )


def verify_computer_names(resource_group: str, mappings: Dict[str, str]) -> List[str]:
    """Return the old names whose computer name does not match the new one."""
    mismatched = []
    for old_name, new_name in mappings.items():
        current = azcli.run_az(
            [
                "vm",
                "show",
                "--resource-group",
                resource_group,
                "--name",
                old_name,
                "--query",
                "osProfile.computerName",
                "--output",
                "tsv",
            ],
            as_json=False,
            check=False,
        )
        if current == new_name:
            helpers.print_success(f"{old_name}: computer name is {current}")
        else:
            helpers.print_warning(f"{old_name}: computer name is {current or 'unknown'}")
            mismatched.append(old_name)
    return mismatched


def rename_vms(
    resource_group: str,
    mappings: Dict[str, str],
    admin_user: str,
    set_hostname: bool = False,
    assume_yes: bool = False,
) -> int:
    helpers.print_header("VM Rename")
    if not mappings:
        helpers.print_info("No renames configured")
        return 0
    present = plan_renames(resource_group, mappings)
    if not present:
        helpers.print_info("No VMs to rename")
        return 0

    details = {}
    for old_name, new_name in present.items():
        details[old_name] = describe_vm(resource_group, old_name)
        click.echo(click.style(f"\n  {old_name} -> {new_name}", fg="white", bold=True))
        helpers.print_detail("Size", details[old_name]["size"])
        helpers.print_detail("Zone", details[old_name]["zone"] or "-")
        helpers.print_detail("Private IP", details[old_name]["private_ip"] or "-")
        helpers.print_detail("Public IP", details[old_name]["public_ip"] or "-")
        helpers.print_detail("OS disk", details[old_name]["os_disk"])

    if not helpers.confirm_y("\nDo you want to proceed with renaming?", assume_yes):
        helpers.print_info("Rename cancelled")
        return 0

    failed = []
    for old_name, new_name in present.items():
        helpers.print_info(f"Updating computer name of {old_name} to {new_name}")
        try:
            update_computer_name(resource_group, old_name, new_name)
        except BeeuxError as e:
            helpers.print_error(f"Failed to update {old_name}: {e}")
            failed.append(old_name)
            continue
        if set_hostname:
            host = vmops.get_public_ip(resource_group, old_name)
            if not host:
                helpers.print_warning(f"{old_name} has no public IP; host name not changed")
                continue
            try:
                remote.set_hostname(host, admin_user, new_name)
                helpers.print_success(f"Host name set on {host}")
            except RemoteCommandError as e:
                helpers.print_warning(f"Could not set host name on {host}: {e}")

    helpers.print_header("Verification")
    verify_computer_names(resource_group, {k: v for k, v in present.items() if k not in failed})
    helpers.print_info("Restart the VMs for the new computer names to take effect:")
    for old_name in present:
        click.echo(f"    az vm restart --resource-group {resource_group} --name {old_name}")
    return 1 if failed else 0
