"""Provisioning for the ubuntu-dev VM fleet.

New VMs get their own configuration directory copied from the
``ubuntu-dev-01`` template and are deployed with a resource-group scoped
Bicep deployment. Bulk provisioning deploys a numbered range one VM at a
time with a fixed pause between deployments.
"""

import getpass
import json
import logging
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import click
from tqdm import tqdm

import infra.azcli as azcli
import infra.costs as costs
import infra.helpers as helpers
from infra.exceptions import BeeuxError, PrerequisiteError
from infra.naming import (
    TEMPLATE_VM_NAME,
    deployment_name,
    generate_vm_name,
    parse_bulk_range,
    validate_vm_name,
    vm_resource_name,
)
from infra.utils import deployment_outputs

logger = logging.getLogger(__name__)

DEFAULT_VMS_DIR = "environments/dev/vms"
DEFAULT_SSH_KEY_PATH = Path("~/.ssh/id_rsa.pub")
BULK_DELAY_SECONDS = 30
TEMPLATE_FILE = Path("bicep") / "main.bicep"
PARAMETERS_FILE = Path("bicep") / "parameters.json"


def create_vm_directory(vm_name: str, vms_dir: Union[str, Path]) -> Path:
    """Copy the template VM's Bicep files and set ``vmName`` in parameters.

    Raises:
        PrerequisiteError: If the template VM directory is missing
    """
    vms_dir = Path(vms_dir)
    template_dir = vms_dir / TEMPLATE_VM_NAME
    if not (template_dir / TEMPLATE_FILE).exists():
        raise PrerequisiteError(
            "Template VM configuration not found",
            context={"path": str(template_dir / TEMPLATE_FILE)},
        )
    vm_dir = vms_dir / vm_name
    (vm_dir / "bicep").mkdir(parents=True, exist_ok=True)
    if vm_dir != template_dir:
        shutil.copyfile(template_dir / TEMPLATE_FILE, vm_dir / TEMPLATE_FILE)
        with open(template_dir / PARAMETERS_FILE, "r") as f:
            parameters = json.load(f)
        parameters.setdefault("parameters", {})["vmName"] = {"value": vm_name}
        with open(vm_dir / PARAMETERS_FILE, "w") as f:
            json.dump(parameters, f, indent=2)
            f.write("\n")
    logger.info(f"Created VM configuration {vm_dir}")
    return vm_dir


def create_vm_config(
    vm_name: str, vms_dir: Union[str, Path], assume_yes: bool = False
) -> int:
    """Validate ``vm_name`` and create its configuration directory."""
    validate_vm_name(vm_name)
    vm_dir = Path(vms_dir) / vm_name
    if vm_dir.exists():
        helpers.print_warning(f"VM configuration already exists: {vm_dir}")
        if not helpers.confirm_y("Overwrite existing configuration?", assume_yes):
            helpers.print_info("Creation cancelled")
            return 0
    create_vm_directory(vm_name, vms_dir)
    helpers.print_success(f"VM configuration created: {vm_dir}")
    helpers.print_info(f"Deploy it with: beeuxctl provision deploy {vm_name}")
    return 0


def ensure_resource_group(config: Dict[str, Any], now: Optional[datetime] = None) -> None:
    name = config["RESOURCE_GROUP"]
    if azcli.resource_group_exists(name):
        helpers.print_success(f"Resource group exists: {name}")
        return
    helpers.print_info(f"Creating resource group: {name} ({config['AZURE_LOCATION']})")
    azcli.create_resource_group(
        name,
        config["AZURE_LOCATION"],
        {
            "Environment": config["ENVNM"],
            "Purpose": "Development Infrastructure",
            "CreatedBy": getpass.getuser(),
            "CreatedOn": (now or datetime.now()).strftime("%Y-%m-%d"),
        },
    )
    helpers.print_success(f"Resource group created: {name}")


def read_ssh_public_key(path: Union[str, Path] = DEFAULT_SSH_KEY_PATH) -> Optional[str]:
    key_path = Path(path).expanduser()
    if not key_path.exists():
        return None
    return key_path.read_text().strip() or None


def deploy_vm(
    vm_name: str,
    vms_dir: Union[str, Path],
    config: Dict[str, Any],
    ssh_public_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Run the resource group deployment for one VM and return its outputs."""
    vm_dir = Path(vms_dir) / vm_name
    template = vm_dir / TEMPLATE_FILE
    parameters = vm_dir / PARAMETERS_FILE
    if not template.exists():
        raise PrerequisiteError("Bicep template not found", context={"path": str(template)})

    args = [
        "deployment",
        "group",
        "create",
        "--resource-group",
        config["RESOURCE_GROUP"],
        "--name",
        deployment_name(vm_name, now),
        "--template-file",
        str(template),
    ]
    if parameters.exists():
        args += ["--parameters", f"@{parameters}"]
    args += ["--parameters", f"vmName={vm_resource_name(vm_name, config)}"]
    if ssh_public_key:
        args += ["--parameters", f"sshPublicKey={ssh_public_key}"]

    helpers.print_info(f"Deploying {vm_name} (this may take several minutes)...")
    deployment = azcli.run_az(args)
    return deployment_outputs(deployment or {})


def show_deployment_results(vm_name: str, outputs: Dict[str, Any]) -> None:
    click.echo(click.style(f"\n✅ {vm_name} deployed", fg="green", bold=True))
    helpers.print_detail("Public IP", outputs.get("publicIPAddress") or "N/A")
    helpers.print_detail("FQDN", outputs.get("fqdn") or "N/A")
    helpers.print_detail("SSH", outputs.get("sshCommand") or "N/A")


def provision_single_vm(
    vm_name: str,
    vms_dir: Union[str, Path],
    config: Dict[str, Any],
    ssh_public_key: Optional[str] = None,
) -> bool:
    """Create (if needed) and deploy one VM; failures are reported, not raised."""
    try:
        if not (Path(vms_dir) / vm_name / TEMPLATE_FILE).exists():
            helpers.print_info(f"No configuration for {vm_name}, creating it")
            create_vm_directory(vm_name, vms_dir)
        outputs = deploy_vm(vm_name, vms_dir, config, ssh_public_key)
    except BeeuxError as e:
        helpers.print_error(f"Deployment of {vm_name} failed: {e}")
        return False
    show_deployment_results(vm_name, outputs)
    return True


def deploy_one(
    vm_name: str,
    vms_dir: Union[str, Path],
    config: Dict[str, Any],
    ssh_key_path: Union[str, Path] = DEFAULT_SSH_KEY_PATH,
    assume_yes: bool = False,
) -> int:
    validate_vm_name(vm_name)
    helpers.print_header(f"Deploy {vm_name}")
    helpers.print_detail("Resource group", config["RESOURCE_GROUP"])
    helpers.print_detail("Location", config["AZURE_LOCATION"])
    helpers.print_detail("VM resource", vm_resource_name(vm_name, config))
    costs.show_cost_breakdown(1)
    if not helpers.confirm_yes(f"\nDeploy {vm_name}?", assume_yes):
        helpers.print_info("Deployment cancelled")
        return 0
    ssh_key = read_ssh_public_key(ssh_key_path)
    if not ssh_key:
        helpers.print_warning(
            f"No SSH public key at {ssh_key_path}; the template's authentication "
            "defaults apply"
        )
    ensure_resource_group(config)
    return 0 if provision_single_vm(vm_name, vms_dir, config, ssh_key) else 1


def _pause(seconds: int, sleep: Callable[[float], None]) -> None:
    for _ in tqdm(range(seconds), desc="Waiting before next deployment", unit="s", leave=False):
        sleep(1)


def provision_multiple_vms(
    start: str,
    end: str,
    vms_dir: Union[str, Path],
    config: Dict[str, Any],
    ssh_key_path: Union[str, Path] = DEFAULT_SSH_KEY_PATH,
    delay: int = BULK_DELAY_SECONDS,
    assume_yes: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Deploy ``ubuntu-dev-<start>`` through ``ubuntu-dev-<end>`` in order.

    Returns:
        Exit code: 0 when every VM deployed (or the run was cancelled),
        1 if any deployment failed
    """
    first, last = parse_bulk_range(start, end)
    vm_names = [generate_vm_name(n) for n in range(first, last + 1)]

    helpers.print_header(f"Bulk provisioning: {vm_names[0]} .. {vm_names[-1]}")
    costs.show_cost_breakdown(len(vm_names))
    if not helpers.confirm_yes(f"\nDeploy {len(vm_names)} VMs?", assume_yes):
        helpers.print_info("Bulk provisioning cancelled")
        return 0

    ssh_key = read_ssh_public_key(ssh_key_path)
    ensure_resource_group(config)

    succeeded: List[str] = []
    failed: List[str] = []
    for index, vm_name in enumerate(vm_names):
        helpers.print_info(f"[{index + 1}/{len(vm_names)}] {vm_name}")
        if provision_single_vm(vm_name, vms_dir, config, ssh_key):
            succeeded.append(vm_name)
        else:
            failed.append(vm_name)
        if index < len(vm_names) - 1 and delay > 0:
            _pause(delay, sleep)

    _show_bulk_summary(succeeded, failed)
    return 1 if failed else 0


def _show_bulk_summary(succeeded: List[str], failed: List[str]) -> None:
    helpers.print_header("Bulk provisioning summary")
    helpers.print_detail("Successful", len(succeeded))
    helpers.print_detail("Failed", len(failed))
    if failed:
        helpers.print_error(f"Failed VMs: {', '.join(failed)}")
    else:
        helpers.print_success("All VMs deployed")
