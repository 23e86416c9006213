"""Permanent deletion of a VM and the resources created alongside it.

Deletion is gated by three typed confirmations. The virtual network is never
deleted because other VMs may share it.
"""

import logging
from typing import Any, Dict, List, Tuple

import click

import infra.azcli as azcli
import infra.costs as costs
import infra.helpers as helpers
import infra.vmops as vmops
from infra.exceptions import AzureCliError
from infra.naming import vm_resource_name
from infra.utils import lookup

logger = logging.getLogger(__name__)

DELETE_PHRASE = "DELETE"
FINAL_PHRASE = "YES I AM SURE"


def find_associated_resources(resource_group: str, name: str) -> Dict[str, str]:
    """Return IDs/names of the NIC, OS disk, public IP, NSG and VNet of a VM."""
    vm = azcli.run_az(["vm", "show", "--resource-group", resource_group, "--name", name]) or {}
    resources = {
        "nic_id": lookup(vm, "networkProfile.networkInterfaces[0].id", ""),
        "os_disk": lookup(vm, "storageProfile.osDisk.name", ""),
        "public_ip_id": "",
        "nsg_id": "",
        "vnet": "",
    }
    if resources["nic_id"]:
        nic = azcli.run_az(["network", "nic", "show", "--ids", resources["nic_id"]]) or {}
        resources["public_ip_id"] = lookup(nic, "ipConfigurations[0].publicIPAddress.id", "")
        resources["nsg_id"] = lookup(nic, "networkSecurityGroup.id", "")
        subnet_id = lookup(nic, "ipConfigurations[0].subnet.id", "")
        if subnet_id:
            resources["vnet"] = helpers.resource_basename(subnet_id.split("/subnets/")[0])
    return resources


def show_resources(name: str, resources: Dict[str, str]) -> None:
    click.echo(click.style("\nThe following resources will be DELETED:", fg="red"))
    helpers.print_detail("Virtual machine", name)
    helpers.print_detail("OS disk", resources["os_disk"] or "-")
    helpers.print_detail("Network interface", helpers.resource_basename(resources["nic_id"]) or "-")
    helpers.print_detail("Public IP", helpers.resource_basename(resources["public_ip_id"]) or "-")
    helpers.print_detail("Security group", helpers.resource_basename(resources["nsg_id"]) or "-")
    if resources["vnet"]:
        helpers.print_warning(
            f"Virtual network {resources['vnet']} will be preserved as it may be "
            "shared with other VMs"
        )


def confirm_deletion(vm_name: str) -> bool:
    """Require the VM name, ``DELETE`` and ``YES I AM SURE`` in turn."""
    click.echo(click.style("\nALL DATA ON THE VM WILL BE LOST", fg="red", bold=True))
    click.echo(click.style("This action CANNOT be undone\n", fg="yellow"))
    if not helpers.confirm_phrase(
        f"Please type the VM name '{vm_name}' to confirm deletion:", vm_name
    ):
        helpers.print_info("VM name doesn't match. Deletion cancelled.")
        return False
    if not helpers.confirm_phrase(
        f"Are you absolutely sure you want to DELETE this VM? Type '{DELETE_PHRASE}' to confirm:",
        DELETE_PHRASE,
    ):
        helpers.print_info("Deletion cancelled by user")
        return False
    if not helpers.confirm_phrase(
        f"FINAL WARNING: This will permanently delete VM '{vm_name}' and all data. "
        f"Type '{FINAL_PHRASE}' to proceed:",
        FINAL_PHRASE,
    ):
        helpers.print_info("Deletion cancelled by user")
        return False
    return True


def delete_associated_resources(resource_group: str, resources: Dict[str, str]) -> List[str]:
    """Start deletion of the leftover resources; return warnings for failures."""
    steps: List[Tuple[str, List[str]]] = []
    if resources["os_disk"]:
        steps.append(
            (
                f"OS disk {resources['os_disk']}",
                ["disk", "delete", "--resource-group", resource_group,
                 "--name", resources["os_disk"], "--yes", "--no-wait"],
            )
        )
    for key, label, group in (
        ("nic_id", "Network interface", "nic"),
        ("public_ip_id", "Public IP", "public-ip"),
        ("nsg_id", "Network security group", "nsg"),
    ):
        if resources[key]:
            steps.append(
                (
                    f"{label} {helpers.resource_basename(resources[key])}",
                    ["network", group, "delete", "--ids", resources[key], "--no-wait"],
                )
            )

    warnings = []
    for label, args in steps:
        helpers.print_info(f"Deleting {label}")
        try:
            azcli.run_az(args, as_json=False)
        except AzureCliError:
            warnings.append(label)
            helpers.print_warning(f"{label} may already be deleted")
    return warnings


def cleanup_vm(vm_name: str, config: Dict[str, Any]) -> int:
    """Interactively delete ``vm_name`` and its associated resources.

    Returns:
        Exit code: 0 when deleted, cancelled, or already absent
    """
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)

    helpers.print_header("CHECKING VM EXISTENCE")
    if not vmops.vm_exists(resource_group, name):
        helpers.print_warning(f"VM {name} not found in resource group {resource_group}")
        helpers.print_info("VM may already be deleted or never existed")
        return 0
    helpers.print_info(f"VM found: {name}")

    helpers.print_header("⚠️  DANGER ZONE ⚠️")
    resources = find_associated_resources(resource_group, name)
    show_resources(name, resources)
    if not confirm_deletion(vm_name):
        return 0

    helpers.print_warning("Proceeding with VM deletion...")
    helpers.print_header("DELETING VIRTUAL MACHINE")
    helpers.print_info("This may take several minutes...")
    azcli.run_az(
        ["vm", "delete", "--resource-group", resource_group, "--name", name,
         "--yes", "--force-deletion", "true"],
        as_json=False,
    )
    helpers.print_success("Virtual Machine deleted successfully")

    helpers.print_header("CLEANING UP ASSOCIATED RESOURCES")
    delete_associated_resources(resource_group, resources)
    helpers.print_success("Associated resources cleanup initiated")

    helpers.print_header("CLEANUP SUMMARY")
    click.echo(click.style("VM Deletion Completed Successfully!", fg="green"))
    helpers.print_detail("Deleted VM", name)
    helpers.print_detail("Monthly savings", f"${costs.MONTHLY_COST_PER_VM:.2f}")
    helpers.print_info("All compute charges for this VM have stopped")
    helpers.print_info("Storage charges will stop once disk deletion completes")
    helpers.print_warning(f"To recreate this VM run: beeuxctl provision deploy {vm_name}")
    return 0
