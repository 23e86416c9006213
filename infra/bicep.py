"""Subscription-scope Bicep deployments for the role-based VMs.

All role VMs (data, apps, infr) share one template and one parameter file;
the manifest entry for the role supplies name, size, zone and static
private IP as parameter overrides at deploy time.
"""

import json
import logging
import os
import re
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import click

import infra.azcli as azcli
import infra.helpers as helpers
import infra.remote as remote
import infra.vmops as vmops
from infra.exceptions import AzureCliError, DeploymentError, PrerequisiteError, ValidationError
from infra.naming import deployment_name
from infra.utils import deployment_outputs, mask_secret

logger = logging.getLogger(__name__)

SSH_KEY_PATTERN = re.compile(r"^ssh-(rsa|ed25519)")

OUTPUT_LABELS = [
    ("vmPublicIP", "Public IP"),
    ("vmPrivateIP", "Private IP"),
    ("sshCommand", "SSH"),
    ("resourceGroupName", "Resource group"),
]


def validate_ssh_key(ssh_key: Optional[str]) -> str:
    """Return the stripped key or raise ValidationError."""
    if not ssh_key or not ssh_key.strip():
        raise ValidationError("SSH public key is required (-k)")
    ssh_key = ssh_key.strip()
    if not SSH_KEY_PATTERN.match(ssh_key):
        raise ValidationError("SSH public key must start with 'ssh-rsa' or 'ssh-ed25519'")
    return ssh_key


def resolve_template_paths(vm: Dict[str, Any], root: Union[str, Path]) -> Dict[str, Path]:
    """Absolute template and parameter paths for a manifest entry.

    Raises:
        PrerequisiteError: If either file does not exist
    """
    root = Path(root)
    paths = {"template": root / vm["template"], "parameters": root / vm["parameters"]}
    for label, path in paths.items():
        if not path.exists():
            raise PrerequisiteError(
                f"Bicep {label} file not found", context={"path": str(path)}
            )
    return paths


def parameter_overrides(
    vm: Dict[str, Any], config: Dict[str, Any], ssh_key: Optional[str]
) -> Dict[str, Any]:
    overrides = {
        "vmName": vm["name"],
        "vmSize": vm.get("size") or config["VM_SIZE"],
        "privateIPAddress": str(vm["private_ip"]),
        "location": config["AZURE_LOCATION"],
        "zone": str(vm.get("zone") or config["AZURE_ZONE"]),
        "adminUsername": config["VM_ADMIN_USER"],
    }
    if ssh_key:
        overrides["sshPublicKey"] = ssh_key
    return overrides


def render_parameters(parameters_file: Union[str, Path], overrides: Dict[str, Any]) -> str:
    """Write a copy of an ARM parameter file with ``overrides`` applied.

    Returns:
        Path of the temporary file; the caller removes it
    """
    with open(parameters_file, "r") as f:
        document = json.load(f)
    params = document.setdefault("parameters", {})
    for name, value in overrides.items():
        params[name] = {"value": value}
    fd, path = tempfile.mkstemp(prefix="beeux-params-", suffix=".json")
    with os.fdopen(fd, "w") as f:
        json.dump(document, f, indent=2)
    return path


def _deployment_args(
    verb: str, name: str, location: str, template: Path, params_path: str
) -> list:
    return [
        "deployment",
        "sub",
        verb,
        "--name",
        name,
        "--location",
        location,
        "--template-file",
        str(template),
        "--parameters",
        f"@{params_path}",
    ]


def what_if(name: str, location: str, template: Path, params_path: str) -> str:
    return azcli.run_az(
        _deployment_args("what-if", name, location, template, params_path), as_json=False
    )


def deploy_subscription(
    name: str, location: str, template: Path, params_path: str
) -> Dict[str, Any]:
    """Run ``az deployment sub create`` and return the flattened outputs.

    Raises:
        DeploymentError: If Azure reports the deployment as failed
    """
    try:
        deployment = azcli.run_az(
            _deployment_args("create", name, location, template, params_path)
        )
    except AzureCliError as e:
        raise DeploymentError(
            f"Deployment '{name}' failed", context={"stderr": e.stderr}
        ) from e
    state = (deployment or {}).get("properties", {}).get("provisioningState")
    if state and state != "Succeeded":
        raise DeploymentError(
            f"Deployment '{name}' finished with state {state}"
        )
    return deployment_outputs(deployment or {})


def show_outputs(vm_name: str, outputs: Dict[str, Any]) -> None:
    click.echo(click.style(f"\n✅ {vm_name} deployed", fg="green", bold=True))
    for key, label in OUTPUT_LABELS:
        helpers.print_detail(label, outputs.get(key) or "N/A")


def mount_file_share(
    outputs: Dict[str, Any],
    config: Dict[str, Any],
    storage_key: str,
    boot_wait: int = remote.DEFAULT_BOOT_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    host = outputs.get("vmPublicIP")
    if not host:
        helpers.print_warning("No public IP in deployment outputs; skipping file share mount")
        return False
    helpers.print_info(
        f"Mounting {config['FILE_SHARE_NAME']} at {config['FILE_SHARE_MOUNT']} on {host}"
    )
    mounted = remote.configure_file_share(
        host,
        config["VM_ADMIN_USER"],
        config["STORAGE_ACCOUNT"],
        storage_key,
        config["FILE_SHARE_NAME"],
        config["FILE_SHARE_MOUNT"],
        boot_wait=boot_wait,
        sleep=sleep,
    )
    if mounted:
        helpers.print_success("File share mounted")
    else:
        helpers.print_warning(
            "File share mount failed after retries. Mount it manually with "
            "'sudo mount -a' once the VM is reachable"
        )
    return mounted


def deploy_role(
    vm: Dict[str, Any],
    config: Dict[str, Any],
    ssh_key: Optional[str],
    run_what_if: bool = False,
    mount_share: bool = True,
    root: Union[str, Path] = ".",
    now: Optional[datetime] = None,
    boot_wait: int = remote.DEFAULT_BOOT_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Deploy (or preview) one manifest VM at subscription scope.

    Returns:
        Exit code 0 on success

    Raises:
        ValidationError: If the SSH key is missing or malformed
        PrerequisiteError: If the template or parameter file is missing
        DeploymentError: If Azure reports a failed deployment
    """
    ssh_key = validate_ssh_key(ssh_key)
    paths = resolve_template_paths(vm, root)

    helpers.print_header(f"{'What-if' if run_what_if else 'Deploy'}: {vm['name']} ({vm['role']})")
    helpers.print_detail("Location", config["AZURE_LOCATION"])
    helpers.print_detail("Resource group", config["RESOURCE_GROUP"])
    helpers.print_detail("Size", vm.get("size") or config["VM_SIZE"])
    helpers.print_detail("Private IP", vm["private_ip"])
    helpers.print_detail("Template", paths["template"])

    if config.get("AZURE_SUBSCRIPTION_ID"):
        azcli.set_subscription(config["AZURE_SUBSCRIPTION_ID"])
        helpers.print_info(f"Subscription set: {config['AZURE_SUBSCRIPTION_ID']}")

    storage_key = None
    if mount_share and vm.get("mount_share") and not run_what_if:
        storage_key = azcli.storage_account_key(config["RESOURCE_GROUP"], config["STORAGE_ACCOUNT"])
        if storage_key:
            helpers.print_success(
                f"Storage key retrieved for {config['STORAGE_ACCOUNT']} ({mask_secret(storage_key)})"
            )
        else:
            helpers.print_warning(
                f"Could not retrieve storage key for {config['STORAGE_ACCOUNT']}; "
                "file share will not be mounted"
            )

    name = deployment_name(vm["name"], now)
    params_path = render_parameters(paths["parameters"], parameter_overrides(vm, config, ssh_key))
    try:
        if run_what_if:
            helpers.print_info("Running what-if analysis...")
            click.echo(what_if(name, config["AZURE_LOCATION"], paths["template"], params_path))
            helpers.print_success("What-if analysis complete; no changes were made")
            return 0
        helpers.print_info(f"Starting deployment {name} (this may take several minutes)...")
        outputs = deploy_subscription(name, config["AZURE_LOCATION"], paths["template"], params_path)
    finally:
        os.remove(params_path)

    show_outputs(vm["name"], outputs)
    if storage_key:
        mount_file_share(outputs, config, storage_key, boot_wait=boot_wait, sleep=sleep)
    return 0


def os_disk_id(resource_group: str, name: str) -> str:
    disk_id = azcli.run_az(
        [
            "vm",
            "show",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--query",
            "storageProfile.osDisk.managedDisk.id",
            "--output",
            "tsv",
        ],
        as_json=False,
    )
    if not disk_id:
        raise DeploymentError(f"Could not determine OS disk of {name}")
    return disk_id


def ensure_disk_detached_on_delete(resource_group: str, name: str) -> None:
    """Set the OS disk delete option to Detach so deleting the VM keeps the disk."""
    option = azcli.run_az(
        [
            "vm",
            "show",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--query",
            "storageProfile.osDisk.deleteOption",
            "--output",
            "tsv",
        ],
        as_json=False,
    )
    if option != "Delete":
        return
    helpers.print_warning(f"OS disk of {name} is deleted with the VM; switching it to Detach")
    azcli.run_az(
        [
            "vm",
            "update",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--set",
            "storageProfile.osDisk.deleteOption=Detach",
            "--output",
            "none",
        ],
        as_json=False,
    )


def redeploy_with_disk_reuse(
    vm: Dict[str, Any],
    config: Dict[str, Any],
    source_vm: str,
    source_resource_group: str,
    source_subscription: Optional[str] = None,
    root: Union[str, Path] = ".",
    assume_yes: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Replace ``source_vm`` with the role VM while keeping its OS disk.

    The source VM is stopped, its OS disk delete option is set to Detach and
    the VM is deleted; the surviving managed disk is attached to the new VM.

    With ``source_subscription`` the source VM is looked up there, the new VM
    is deployed to ``AZURE_SUBSCRIPTION_ID`` (or the account that was active
    before) and the previously active account is restored afterwards.
    """
    paths = resolve_template_paths(vm, root)
    helpers.print_header(f"Deploy {vm['name']} reusing the disk of {source_vm}")

    previous_subscription = None
    if source_subscription:
        previous_subscription = azcli.run_az(
            ["account", "show", "--query", "id", "--output", "tsv"], as_json=False
        )
        azcli.set_subscription(source_subscription)
        helpers.print_success(f"Source subscription set: {source_subscription}")
    try:
        return _replace_vm(
            vm,
            config,
            paths,
            source_vm,
            source_resource_group,
            config.get("AZURE_SUBSCRIPTION_ID") or previous_subscription,
            assume_yes,
            now,
        )
    finally:
        if previous_subscription:
            azcli.set_subscription(previous_subscription)
            logger.debug("Restored subscription %s", previous_subscription)


def _replace_vm(vm, config, paths, source_vm, source_resource_group, target_subscription, assume_yes, now):
    state = vmops.get_power_state(source_resource_group, source_vm)
    if state == vmops.NOT_FOUND:
        raise PrerequisiteError(
            f"Source VM '{source_vm}' not found", context={"resource_group": source_resource_group}
        )
    disk_id = os_disk_id(source_resource_group, source_vm)
    helpers.print_detail("Source VM", f"{source_vm} ({state})")
    helpers.print_detail("OS disk", helpers.resource_basename(disk_id))

    if state == vmops.RUNNING:
        helpers.print_warning("VM is running. Stopping it...")
        azcli.run_az(
            ["vm", "stop", "--resource-group", source_resource_group, "--name", source_vm],
            as_json=False,
        )
        helpers.print_success("VM stopped")

    if not helpers.confirm_y(f"Delete VM {source_vm} (its disk is preserved)?", assume_yes):
        helpers.print_info("Deployment cancelled")
        return 0
    ensure_disk_detached_on_delete(source_resource_group, source_vm)
    azcli.run_az(
        ["vm", "delete", "--resource-group", source_resource_group, "--name", source_vm, "--yes"],
        as_json=False,
    )
    helpers.print_success("VM deleted, disk preserved")

    if target_subscription:
        azcli.set_subscription(target_subscription)
        helpers.print_success(f"Target subscription set: {target_subscription}")

    overrides = parameter_overrides(vm, config, None)
    overrides["existingOsDiskId"] = disk_id
    name = deployment_name(vm["name"], now)
    params_path = render_parameters(paths["parameters"], overrides)
    try:
        outputs = deploy_subscription(name, config["AZURE_LOCATION"], paths["template"], params_path)
    finally:
        os.remove(params_path)
    show_outputs(vm["name"], outputs)
    helpers.print_info(f"Data and software from {source_vm} are preserved on the reused disk")
    return 0
