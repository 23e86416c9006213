"""Fleet-wide operations over the ubuntu-dev VMs and a whole resource group."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

import click
from tqdm import tqdm

import infra.azcli as azcli
import infra.costs as costs
import infra.helpers as helpers
import infra.vmops as vmops
from infra.exceptions import AzureCliError, ValidationError
from infra.naming import vm_resource_name

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15
DEFAULT_MAX_WAIT = 600

STATUS_LABELS = {
    vmops.RUNNING: ("Running", "green"),
    vmops.DEALLOCATED: ("Stopped", "yellow"),
    vmops.STOPPED: ("Stopped", "yellow"),
    vmops.NOT_FOUND: ("Not Deployed", "red"),
}


def get_configured_vms(vms_dir: Union[str, Path]) -> List[str]:
    """Names of the VM configuration directories (``ubuntu-*``), sorted."""
    root = Path(vms_dir)
    if not root.is_dir():
        return []
    return sorted(
        entry.name
        for entry in root.iterdir()
        if entry.is_dir() and entry.name.startswith("ubuntu-")
    )


def collect_states(vm_names: List[str], config: Dict[str, Any]) -> Dict[str, str]:
    resource_group = config["RESOURCE_GROUP"]
    return {
        vm: vmops.get_power_state(resource_group, vm_resource_name(vm, config))
        for vm in vm_names
    }


def list_vms(vms_dir: Union[str, Path], config: Dict[str, Any]) -> Dict[str, str]:
    """Print every configured VM with a coloured status and a cost estimate."""
    helpers.print_header("Development VM Fleet")
    vm_names = get_configured_vms(vms_dir)
    if not vm_names:
        helpers.print_warning(f"No VM configurations found in {vms_dir}")
        return {}
    states = collect_states(vm_names, config)
    for vm, state in states.items():
        label, colour = STATUS_LABELS.get(state, (vmops.UNKNOWN, "white"))
        click.echo(f"  {vm:<18} " + click.style(label, fg=colour))
    running = sum(1 for state in states.values() if state == vmops.RUNNING)
    deployed = sum(1 for state in states.values() if state != vmops.NOT_FOUND)
    click.echo(f"\n  Configured: {len(states)}  Deployed: {deployed}  Running: {running}")
    costs.show_running_estimate(running)
    return states


def _bulk_action(
    verb: str,
    action: Callable[[str, str], None],
    should_act: Callable[[str], bool],
    vms_dir: Union[str, Path],
    config: Dict[str, Any],
    assume_yes: bool,
) -> int:
    """Apply ``action`` to every deployed VM whose state passes ``should_act``.

    Returns:
        Exit code: 1 if any VM's ``az`` call failed, else 0
    """
    vm_names = get_configured_vms(vms_dir)
    if not vm_names:
        helpers.print_warning(f"No VM configurations found in {vms_dir}")
        return 0
    if not helpers.confirm_yes(f"{verb} all {len(vm_names)} configured VMs?", assume_yes):
        helpers.print_info("Operation cancelled")
        return 0
    resource_group = config["RESOURCE_GROUP"]
    failed: List[str] = []
    for vm, state in collect_states(vm_names, config).items():
        if state == vmops.NOT_FOUND:
            helpers.print_warning(f"{vm}: not deployed, skipping")
            continue
        if not should_act(state):
            helpers.print_info(f"{vm}: {state.replace('VM ', '')}, skipping")
            continue
        try:
            action(resource_group, vm_resource_name(vm, config))
        except AzureCliError as e:
            helpers.print_error(f"{vm}: {verb.lower()} failed: {e}")
            failed.append(vm)
            continue
        helpers.print_success(f"{vm}: {verb.lower()} requested")
    if failed:
        helpers.print_error(f"{verb} failed for: {', '.join(failed)}")
        return 1
    return 0


def start_all(vms_dir, config, assume_yes=False) -> int:
    return _bulk_action(
        "Start", vmops.start_vm, lambda state: state != vmops.RUNNING, vms_dir, config, assume_yes
    )


def stop_all(vms_dir, config, assume_yes=False) -> int:
    return _bulk_action(
        "Stop", vmops.deallocate_vm, lambda state: state != vmops.DEALLOCATED, vms_dir, config, assume_yes
    )


def restart_all(vms_dir, config, assume_yes=False) -> int:
    """Restart the running VMs; stopped or deallocated ones are skipped."""
    return _bulk_action(
        "Restart", vmops.restart_vm, lambda state: state == vmops.RUNNING, vms_dir, config, assume_yes
    )


def list_resource_group_vms(resource_group: str) -> List[str]:
    names = azcli.run_az(
        ["vm", "list", "--resource-group", resource_group, "--query", "[].name"]
    )
    return list(names or [])


def _check_polling(poll_interval: int, max_wait: int) -> None:
    if poll_interval < 1 or max_wait < 1:
        raise ValidationError(
            "Poll interval and maximum wait must be at least 1 second",
            context={"poll_interval": poll_interval, "max_wait": max_wait},
        )


def wait_for_power_state(
    resource_group: str,
    vm_names: List[str],
    target: str,
    poll_interval: int = DEFAULT_POLL_INTERVAL,
    max_wait: int = DEFAULT_MAX_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> List[str]:
    """Poll until every VM reports ``target`` or ``max_wait`` seconds pass.

    Returns:
        Names of VMs still not in the target state (empty on success)
    """
    _check_polling(poll_interval, max_wait)
    pending = list(vm_names)
    waited = 0
    with tqdm(total=len(vm_names), desc=f"Waiting for '{target}'", unit="vm") as bar:
        while True:
            still_pending = [
                vm for vm in pending if vmops.get_power_state(resource_group, vm) != target
            ]
            bar.update(len(pending) - len(still_pending))
            pending = still_pending
            if not pending or waited >= max_wait:
                break
            step = min(poll_interval, max_wait - waited)
            sleep(step)
            waited += step
    logger.debug("Waited %ss, %d VM(s) pending", waited, len(pending))
    return pending


def shutdown_resource_group(
    resource_group: str,
    poll_interval: int = DEFAULT_POLL_INTERVAL,
    max_wait: int = DEFAULT_MAX_WAIT,
    assume_yes: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Deallocate every VM in ``resource_group`` and wait for completion.

    Returns:
        Exit code: 0 when nothing to do or all VMs deallocated, 1 on timeout
    """
    _check_polling(poll_interval, max_wait)
    helpers.print_header(f"Shutdown: {resource_group}")
    vm_names = list_resource_group_vms(resource_group)
    if not vm_names:
        helpers.print_info(f"No VMs found in resource group {resource_group}")
        return 0

    for vm in vm_names:
        helpers.print_detail(vm, vmops.get_power_state(resource_group, vm))
    if not helpers.confirm_yes(f"Deallocate all {len(vm_names)} VMs?", assume_yes):
        helpers.print_info("Shutdown cancelled")
        return 0

    for vm in vm_names:
        if vmops.get_power_state(resource_group, vm) == vmops.DEALLOCATED:
            helpers.print_info(f"{vm}: already deallocated")
            continue
        vmops.deallocate_vm(resource_group, vm)
        helpers.print_info(f"{vm}: deallocation requested")

    pending = wait_for_power_state(
        resource_group, vm_names, vmops.DEALLOCATED, poll_interval, max_wait, sleep
    )
    if pending:
        helpers.print_error(
            f"Timed out after {max_wait}s waiting for: {', '.join(pending)}"
        )
        return 1
    helpers.print_success(f"All {len(vm_names)} VMs in {resource_group} are deallocated")
    return 0
