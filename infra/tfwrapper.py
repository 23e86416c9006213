import json
import logging
import shutil
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import click

import infra.azcli as azcli
import infra.helpers as helpers
from infra.exceptions import PrerequisiteError, TerraformError
from infra.utils import matching_lines

logger = logging.getLogger(__name__)

BACKUP_DIR = Path(tempfile.gettempdir()) / "terraform-backups"
STATE_FILE = "terraform.tfstate"
LOCK_FILE = ".terraform.lock.hcl"


def run_terraform(
    args: List[str], tf_dir: Union[str, Path], capture: bool = False
) -> subprocess.CompletedProcess:
    """Run ``terraform <args>`` in ``tf_dir``.

    Output streams to the terminal unless ``capture`` is set.

    Raises:
        TerraformError: If terraform exits non-zero
    """
    cmd = ["terraform"] + list(args)
    logger.info("Running: %s (in %s)", " ".join(cmd), tf_dir)
    if capture:
        result = subprocess.run(cmd, cwd=str(tf_dir), capture_output=True, text=True)
    else:
        result = subprocess.run(cmd, cwd=str(tf_dir))
    if result.returncode != 0:
        stderr = (result.stderr or "").strip() if capture else ""
        raise TerraformError(
            f"terraform {args[0]} failed",
            context={"exit_code": result.returncode, "stderr": stderr} if stderr
            else {"exit_code": result.returncode},
        )
    return result


def check_var_files(tf_dir: Union[str, Path], var_files: List[str]) -> None:
    """Raise PrerequisiteError naming every missing var file."""
    missing = [name for name in var_files if not (Path(tf_dir) / name).exists()]
    if missing:
        for name in missing:
            click.echo(f"  cp {name}.example {name}")
        raise PrerequisiteError(
            "Missing required tfvars files: " + ", ".join(missing)
            + ". Copy the .example files above and configure them "
            "(or run: beeuxctl tf prepare)"
        )
    helpers.print_info("All required tfvars files are present")


def backup_state(
    tf_dir: Union[str, Path], backup_dir: Union[str, Path], stamp: str, label: str = ""
) -> Optional[Path]:
    """Copy the local state file into ``backup_dir``; None if there is none."""
    state = Path(tf_dir) / STATE_FILE
    if not state.exists():
        helpers.print_info("No existing state file to backup")
        return None
    backup_dir = Path(backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    suffix = f".{label}" if label else ""
    target = backup_dir / f"{STATE_FILE}{suffix}.{stamp}"
    shutil.copy2(state, target)
    helpers.print_info(f"State backed up to: {target}")
    return target


def tf_init(tf_dir) -> None:
    helpers.print_info("Initializing Terraform...")
    run_terraform(["init", "-upgrade"], tf_dir)
    helpers.print_success("Terraform initialized successfully")


def tf_validate(tf_dir) -> None:
    helpers.print_info("Validating Terraform configuration...")
    run_terraform(["validate"], tf_dir)
    helpers.print_success("Terraform configuration is valid")


def tf_plan(tf_dir, var_files: List[str], plan_file: Union[str, Path], destroy: bool = False) -> None:
    helpers.print_info(
        "Generating Terraform destroy plan..." if destroy
        else "Generating Terraform execution plan..."
    )
    args = ["plan"]
    if destroy:
        args.append("-destroy")
    for name in var_files:
        args += ["-var-file", name]
    args += ["-out", str(plan_file)]
    run_terraform(args, tf_dir)
    helpers.print_info(f"Execution plan saved to: {plan_file}")


def plan_summary(tf_dir, plan_file: Union[str, Path]) -> List[str]:
    """Lines of ``terraform show`` that summarise the plan."""
    result = run_terraform(["show", "-no-color", str(plan_file)], tf_dir, capture=True)
    return matching_lines(result.stdout, r"Plan:|No changes")


def tf_apply(tf_dir, plan_file: Union[str, Path]) -> None:
    if not Path(plan_file).exists():
        raise PrerequisiteError(f"Plan file not found: {plan_file}")
    helpers.print_info("Applying Terraform execution plan...")
    run_terraform(["apply", str(plan_file)], tf_dir)
    helpers.print_success("Terraform apply completed successfully")


def tf_output_json(tf_dir) -> Dict[str, Any]:
    result = run_terraform(["output", "-json"], tf_dir, capture=True)
    return json.loads(result.stdout or "{}")


def output_value(outputs: Dict[str, Any], name: str, default: str = "N/A") -> Any:
    entry = outputs.get(name)
    if isinstance(entry, dict):
        return entry.get("value", default)
    return default


def tf_state_list(tf_dir) -> List[str]:
    try:
        result = run_terraform(["state", "list"], tf_dir, capture=True)
    except TerraformError:
        return []
    return [line for line in result.stdout.splitlines() if line.strip()]


def save_outputs(tf_dir, backup_dir: Union[str, Path], stamp: str) -> Optional[Path]:
    helpers.print_info("Saving Terraform outputs...")
    try:
        outputs = tf_output_json(tf_dir)
    except (TerraformError, json.JSONDecodeError) as e:
        helpers.print_warning(f"Failed to save outputs: {e}")
        return None
    Path(backup_dir).mkdir(parents=True, exist_ok=True)
    target = Path(backup_dir) / f"outputs.{stamp}.json"
    with open(target, "w") as f:
        json.dump(outputs, f, indent=2)
    helpers.print_info(f"Outputs saved to: {target}")
    return target


def verify_resources(tf_dir, expected_vm_count: int = 0) -> Dict[str, Any]:
    """Cross-check Terraform state against what Azure reports."""
    helpers.print_info("Verifying deployed resources...")
    resources = tf_state_list(tf_dir)
    helpers.print_info(f"Total resources in state: {len(resources)}")
    outputs = {}
    try:
        outputs = tf_output_json(tf_dir)
    except (TerraformError, json.JSONDecodeError):
        helpers.print_warning("Terraform outputs unavailable")
    resource_group = output_value(outputs, "resource_group_name", "")
    report = {"state_resources": len(resources), "resource_group": resource_group, "vms": []}
    if not resource_group:
        return report
    if azcli.resource_group_exists(resource_group):
        helpers.print_success(f"Resource group exists: {resource_group}")
    else:
        helpers.print_error(f"Resource group not found: {resource_group}")
        return report
    vms = azcli.run_az(
        [
            "vm",
            "list",
            "--resource-group",
            resource_group,
            "--show-details",
            "--query",
            "[].{name:name, state:powerState, ip:privateIps}",
        ],
        check=False,
    ) or []
    report["vms"] = vms
    helpers.print_info(f"VMs deployed: {len(vms)}")
    for vm in vms:
        helpers.print_detail(vm.get("name", "?"), f"{vm.get('state', '')} {vm.get('ip', '')}")
    if expected_vm_count:
        if len(vms) == expected_vm_count:
            helpers.print_success(f"All {expected_vm_count} VMs deployed")
        else:
            helpers.print_warning(f"Expected {expected_vm_count} VMs, found {len(vms)}")
    return report


def show_deployment_summary(tf_dir, backup_dir, stamp: str) -> None:
    outputs = {}
    try:
        outputs = tf_output_json(tf_dir)
    except (TerraformError, json.JSONDecodeError):
        pass
    helpers.print_header("Deployment Summary")
    helpers.print_detail("Resource group", output_value(outputs, "resource_group_name"))
    helpers.print_detail("Virtual network", output_value(outputs, "vnet_name"))
    helpers.print_detail("Storage account", output_value(outputs, "storage_account_name"))
    helpers.print_detail("State backup", Path(backup_dir) / f"{STATE_FILE}.{stamp}")
    helpers.print_detail("Outputs", Path(backup_dir) / f"outputs.{stamp}.json")


def _show_failure(backup_dir, stamp: str) -> None:
    helpers.print_error("Deployment Failed")
    click.echo("Troubleshooting steps:")
    click.echo(f"  1. Review plan: terraform show {Path(backup_dir) / f'terraform.plan.{stamp}'}")
    click.echo("  2. Check Azure portal for partial resources")
    click.echo("  3. Consider cleanup: beeuxctl tf rollback")
    click.echo(f"State backup: {Path(backup_dir) / f'{STATE_FILE}.{stamp}'}")


def plan_only(tf_dir, var_files: List[str], backup_dir=BACKUP_DIR, now: Optional[datetime] = None) -> int:
    stamp = helpers.timestamp(now)
    check_var_files(tf_dir, var_files)
    tf_init(tf_dir)
    tf_validate(tf_dir)
    Path(backup_dir).mkdir(parents=True, exist_ok=True)
    plan_file = Path(backup_dir) / f"terraform.plan.{stamp}"
    tf_plan(tf_dir, var_files, plan_file)
    for line in plan_summary(tf_dir, plan_file):
        click.echo(click.style(f"  {line}", fg="white", bold=True))
    return 0


def deploy_all(
    tf_dir,
    var_files: List[str],
    expected_vm_count: int = 0,
    backup_dir=BACKUP_DIR,
    assume_yes: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Plan, confirm, apply and verify the full Terraform environment.

    Returns:
        Exit code 0 on success or cancellation

    Raises:
        PrerequisiteError: If the directory or a var file is missing
        TerraformError: If any Terraform step fails
    """
    tf_dir = Path(tf_dir)
    if not tf_dir.is_dir():
        raise PrerequisiteError(f"Terraform directory not found: {tf_dir}")
    stamp = helpers.timestamp(now)
    helpers.print_header("Starting Azure infrastructure deployment")
    check_var_files(tf_dir, var_files)
    backup_state(tf_dir, backup_dir, stamp)
    try:
        tf_init(tf_dir)
        tf_validate(tf_dir)
        Path(backup_dir).mkdir(parents=True, exist_ok=True)
        plan_file = Path(backup_dir) / f"terraform.plan.{stamp}"
        tf_plan(tf_dir, var_files, plan_file)
        click.echo(click.style("\nPlan summary:", fg="white", bold=True))
        for line in plan_summary(tf_dir, plan_file):
            click.echo(f"  {line}")
        helpers.print_warning("Review the plan above. Resources will be created in Azure.")
        if not helpers.confirm_yes("Do you want to proceed with applying this plan?", assume_yes):
            helpers.print_info("Deployment cancelled by user")
            return 0
        tf_apply(tf_dir, plan_file)
    except TerraformError:
        _show_failure(backup_dir, stamp)
        raise
    save_outputs(tf_dir, backup_dir, stamp)
    verify_resources(tf_dir, expected_vm_count)
    show_deployment_summary(tf_dir, backup_dir, stamp)
    helpers.print_success("Deployment completed successfully")
    return 0


def archive_local_state(tf_dir, backup_dir, stamp: str) -> None:
    """Move state files into the backup dir and drop the provider cache."""
    tf_dir = Path(tf_dir)
    Path(backup_dir).mkdir(parents=True, exist_ok=True)
    for name in (STATE_FILE, f"{STATE_FILE}.backup"):
        path = tf_dir / name
        if path.exists():
            target = Path(backup_dir) / f"{name}.post-rollback.{stamp}"
            shutil.move(str(path), str(target))
            helpers.print_info(f"Moved {name} to {target}")
    if (tf_dir / ".terraform").is_dir():
        shutil.rmtree(tf_dir / ".terraform")
    if (tf_dir / LOCK_FILE).exists():
        (tf_dir / LOCK_FILE).unlink()
    helpers.print_info("Local Terraform files cleaned up")


def rollback(
    tf_dir,
    var_files: List[str],
    backup_dir=BACKUP_DIR,
    now: Optional[datetime] = None,
) -> int:
    """Destroy everything in the Terraform state after two confirmations."""
    tf_dir = Path(tf_dir)
    if not (tf_dir / STATE_FILE).exists():
        raise PrerequisiteError(
            f"No Terraform state found in {tf_dir}; nothing to roll back"
        )
    stamp = helpers.timestamp(now)
    helpers.print_header("Infrastructure Rollback")
    backup_state(tf_dir, backup_dir, stamp, label="pre-rollback")

    resources = tf_state_list(tf_dir)
    click.echo(click.style(f"\nResources in state ({len(resources)}):", fg="white", bold=True))
    for address in resources:
        click.echo(f"  {address}")
    outputs = {}
    try:
        outputs = tf_output_json(tf_dir)
    except (TerraformError, json.JSONDecodeError):
        helpers.print_warning("Terraform outputs unavailable")
    resource_group = output_value(outputs, "resource_group_name", "")
    if resource_group:
        names = azcli.run_az(
            ["resource", "list", "--resource-group", resource_group, "--query", "[].name"],
            check=False,
        ) or []
        click.echo(click.style(f"\nAzure resources in {resource_group}:", fg="white", bold=True))
        for name in names:
            click.echo(f"  {name}")

    Path(backup_dir).mkdir(parents=True, exist_ok=True)
    plan_file = Path(backup_dir) / f"terraform.destroy-plan.{stamp}"
    tf_init(tf_dir)
    tf_plan(tf_dir, var_files, plan_file, destroy=True)
    for line in plan_summary(tf_dir, plan_file):
        click.echo(f"  {line}")

    click.echo(click.style("\nWARNING: ALL RESOURCES ABOVE WILL BE DESTROYED", fg="red", bold=True))
    if not helpers.confirm_phrase("Type 'destroy' to confirm:", "destroy"):
        helpers.print_info("Rollback cancelled by user")
        return 0
    if not helpers.confirm_yes("Are you absolutely sure?"):
        helpers.print_info("Rollback cancelled by user")
        return 0

    tf_apply(tf_dir, plan_file)
    if resource_group:
        if azcli.resource_group_exists(resource_group):
            helpers.print_warning(
                f"Resource group {resource_group} still exists; deletion may still be in progress"
            )
        else:
            helpers.print_success(f"Resource group {resource_group} deleted")
    archive_local_state(tf_dir, backup_dir, stamp)
    helpers.print_success("Rollback completed successfully")
    return 0
