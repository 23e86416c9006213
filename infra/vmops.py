"""Single VM management: info, start, stop, restart and SSH connect."""

import logging
import subprocess
from typing import Any, Dict, Optional

import click

import infra.azcli as azcli
import infra.costs as costs
import infra.helpers as helpers
from infra.exceptions import AzureCliError, BeeuxError
from infra.naming import vm_resource_name

logger = logging.getLogger(__name__)

RUNNING = "VM running"
DEALLOCATED = "VM deallocated"
STOPPED = "VM stopped"
NOT_FOUND = "Not Found"
UNKNOWN = "Unknown"

POWER_STATE_QUERY = (
    "instanceView.statuses[?starts_with(code, 'PowerState/')].displayStatus | [0]"
)


def get_power_state(resource_group: str, name: str) -> str:
    """Return the display power state, ``Not Found`` if the VM is absent."""
    try:
        state = azcli.run_az(
            [
                "vm",
                "get-instance-view",
                "--resource-group",
                resource_group,
                "--name",
                name,
                "--query",
                POWER_STATE_QUERY,
                "--output",
                "tsv",
            ],
            as_json=False,
        )
    except AzureCliError:
        return NOT_FOUND
    return state or UNKNOWN


def vm_exists(resource_group: str, name: str) -> bool:
    return azcli.az_succeeds(["vm", "show", "--resource-group", resource_group, "--name", name])


def get_public_ip(resource_group: str, name: str) -> Optional[str]:
    ip = azcli.run_az(
        [
            "vm",
            "show",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--show-details",
            "--query",
            "publicIps",
            "--output",
            "tsv",
        ],
        as_json=False,
        check=False,
    )
    return ip or None


def vm_details(resource_group: str, name: str) -> Dict[str, Any]:
    """Return a flat summary of ``az vm show --show-details``."""
    info = azcli.run_az(
        ["vm", "show", "--resource-group", resource_group, "--name", name, "--show-details"]
    ) or {}
    storage = info.get("storageProfile", {}).get("osDisk", {})
    return {
        "name": info.get("name", name),
        "power_state": info.get("powerState", UNKNOWN),
        "size": info.get("hardwareProfile", {}).get("vmSize", ""),
        "location": info.get("location", ""),
        "zones": ",".join(info.get("zones") or []),
        "computer_name": info.get("osProfile", {}).get("computerName", ""),
        "public_ip": info.get("publicIps", ""),
        "private_ip": info.get("privateIps", ""),
        "os_disk": storage.get("name", ""),
        "os_disk_size_gb": storage.get("diskSizeGb", ""),
    }


def _vm_action(action: str, resource_group: str, name: str, wait: bool = False) -> None:
    args = ["vm", action, "--resource-group", resource_group, "--name", name]
    if not wait:
        args.append("--no-wait")
    azcli.run_az(args, as_json=False)


def start_vm(resource_group: str, name: str, wait: bool = False) -> None:
    _vm_action("start", resource_group, name, wait)


def deallocate_vm(resource_group: str, name: str, wait: bool = False) -> None:
    _vm_action("deallocate", resource_group, name, wait)


def restart_vm(resource_group: str, name: str, wait: bool = False) -> None:
    _vm_action("restart", resource_group, name, wait)


def show_vm_info(vm_name: str, config: Dict[str, Any]) -> int:
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)
    helpers.print_header(f"VM Information: {vm_name}")
    state = get_power_state(resource_group, name)
    if state == NOT_FOUND:
        helpers.print_warning(f"VM '{name}' is not deployed in {resource_group}")
        return 0
    details = vm_details(resource_group, name)
    helpers.print_detail("Resource name", details["name"])
    helpers.print_detail("Status", state)
    helpers.print_detail("Size", details["size"])
    helpers.print_detail("Location", details["location"])
    if details["zones"]:
        helpers.print_detail("Zone", details["zones"])
    helpers.print_detail("Private IP", details["private_ip"] or "-")
    helpers.print_detail("Public IP", details["public_ip"] or "-")
    helpers.print_detail("OS disk", f"{details['os_disk']} ({details['os_disk_size_gb']} GB)")
    if details["public_ip"]:
        helpers.print_detail(
            "SSH", f"ssh {config['VM_ADMIN_USER']}@{details['public_ip']}"
        )
    return 0


def start(vm_name: str, config: Dict[str, Any], assume_yes: bool = False) -> int:
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)
    state = get_power_state(resource_group, name)
    if state == NOT_FOUND:
        raise BeeuxError(f"VM '{name}' not found in {resource_group}")
    if state == RUNNING:
        helpers.print_info(f"{vm_name} is already running")
        return 0
    helpers.print_warning(
        f"Starting {vm_name} costs ${costs.HOURLY_COST_PER_VM:.3f}/hour "
        f"(${costs.daily_cost(1):.2f}/day) while running"
    )
    if not helpers.confirm_y(f"Start {vm_name}?", assume_yes):
        helpers.print_info("Start cancelled")
        return 0
    start_vm(resource_group, name)
    helpers.print_success(f"Start requested for {vm_name}")
    return 0


def stop(vm_name: str, config: Dict[str, Any], assume_yes: bool = False) -> int:
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)
    state = get_power_state(resource_group, name)
    if state == NOT_FOUND:
        raise BeeuxError(f"VM '{name}' not found in {resource_group}")
    if state == DEALLOCATED:
        helpers.print_info(f"{vm_name} is already deallocated")
        return 0
    if not helpers.confirm_y(f"Stop (deallocate) {vm_name}?", assume_yes):
        helpers.print_info("Stop cancelled")
        return 0
    deallocate_vm(resource_group, name)
    helpers.print_success(f"Deallocation requested for {vm_name}; compute billing stops")
    return 0


def restart(vm_name: str, config: Dict[str, Any], assume_yes: bool = False) -> int:
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)
    state = get_power_state(resource_group, name)
    if state != RUNNING:
        raise BeeuxError(f"{vm_name} is not running (status: {state})")
    if not helpers.confirm_y(f"Restart {vm_name}?", assume_yes):
        helpers.print_info("Restart cancelled")
        return 0
    restart_vm(resource_group, name)
    helpers.print_success(f"Restart requested for {vm_name}")
    return 0


def connect(vm_name: str, config: Dict[str, Any]) -> int:
    """Open an interactive SSH session to a running VM."""
    resource_group = config["RESOURCE_GROUP"]
    name = vm_resource_name(vm_name, config)
    state = get_power_state(resource_group, name)
    if state != RUNNING:
        raise BeeuxError(
            f"{vm_name} is not running (status: {state}). Start it first."
        )
    ip = get_public_ip(resource_group, name)
    if not ip:
        raise BeeuxError(f"No public IP found for {vm_name}")
    target = f"{config['VM_ADMIN_USER']}@{ip}"
    helpers.print_info(f"Connecting: ssh {target}")
    click.echo()
    return subprocess.call(["ssh", target])
