"""Post-deployment checks of what actually exists in Azure.

Each check records a pass, failure or warning; the run fails when any
check failed. Checks keep going after a failure so one report covers the
whole environment.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

import infra.azcli as azcli
import infra.tfwrapper as tfwrapper
import infra.vmops as vmops

logger = logging.getLogger(__name__)

REQUIRED_NSG_RULES = ["AllowSSH", "AllowKubernetesAPI"]
MIN_STATE_RESOURCES = 25


class ValidationReport:
    """Running tally of validation results."""

    def __init__(self):
        self.passed = 0
        self.failed = 0
        self.warnings = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.warnings

    def section(self, title: str) -> None:
        click.echo(click.style(f"\n▶ {title}", fg="blue", bold=True))

    def ok(self, message: str) -> None:
        self.passed += 1
        click.echo(click.style("  ✓ ", fg="green") + message)
        logger.info("PASS %s", message)

    def fail(self, message: str) -> None:
        self.failed += 1
        click.echo(click.style("  ✗ ", fg="red") + message)
        logger.error("FAIL %s", message)

    def warn(self, message: str) -> None:
        self.warnings += 1
        click.echo(click.style("  ⚠ ", fg="yellow") + message)
        logger.warning("WARN %s", message)

    def summary(self) -> int:
        click.echo(click.style("\nValidation Summary", bold=True))
        click.echo(f"  Total checks: {self.total}")
        click.echo(click.style(f"  Passed:   {self.passed}", fg="green"))
        click.echo(click.style(f"  Failed:   {self.failed}", fg="red"))
        click.echo(click.style(f"  Warnings: {self.warnings}", fg="yellow"))
        if self.failed:
            click.echo(click.style("Status: SOME CHECKS FAILED ✗", fg="red", bold=True))
            return 1
        if self.warnings:
            click.echo(click.style("Status: PASSED WITH WARNINGS ⚠", fg="yellow", bold=True))
        else:
            click.echo(click.style("Status: ALL CHECKS PASSED ✓", fg="green", bold=True))
        return 0


def _tsv(args: List[str]) -> str:
    return azcli.run_az(args + ["--output", "tsv"], as_json=False, check=False) or ""


def check_terraform_state(report: ValidationReport, tf_dir: Optional[Path]) -> None:
    report.section("Terraform State")
    if not tf_dir or not (Path(tf_dir) / tfwrapper.STATE_FILE).exists():
        report.warn("No local Terraform state found (skipping)")
        return
    resources = tfwrapper.tf_state_list(tf_dir)
    if not resources:
        report.fail("No resources in state")
        return
    report.ok(f"Resources in state: {len(resources)}")
    if len(resources) < MIN_STATE_RESOURCES:
        report.warn(
            f"Resource count lower than expected: {len(resources)} "
            f"(expected ≥{MIN_STATE_RESOURCES})"
        )


def check_resource_group(report: ValidationReport, config: Dict[str, Any]) -> bool:
    report.section("Resource Group")
    name = config["RESOURCE_GROUP"]
    if not azcli.resource_group_exists(name):
        report.fail(f"Resource group not found: {name}")
        return False
    report.ok(f"Resource group exists: {name}")
    location = _tsv(["group", "show", "--name", name, "--query", "location"])
    if location == config["AZURE_LOCATION"]:
        report.ok(f"Location: {location}")
    else:
        report.warn(f"Location is {location or 'unknown'}, expected {config['AZURE_LOCATION']}")
    count = _tsv(["resource", "list", "--resource-group", name, "--query", "length(@)"])
    report.ok(f"Resources in group: {count or 0}")
    return True


def check_networking(report: ValidationReport, config: Dict[str, Any]) -> None:
    report.section("Networking")
    rg, vnet = config["RESOURCE_GROUP"], config["VNET_NAME"]
    if not azcli.az_succeeds(["network", "vnet", "show", "--resource-group", rg, "--name", vnet]):
        report.fail(f"Virtual network not found: {vnet}")
        return
    space = _tsv(
        ["network", "vnet", "show", "--resource-group", rg, "--name", vnet,
         "--query", "addressSpace.addressPrefixes[0]"]
    )
    report.ok(f"Virtual network {vnet} ({space})")
    subnets = _tsv(
        ["network", "vnet", "subnet", "list", "--resource-group", rg, "--vnet-name", vnet,
         "--query", "length(@)"]
    )
    if subnets and int(subnets) > 0:
        report.ok(f"Subnets: {subnets}")
    else:
        report.fail("No subnets found")
    nsgs = _tsv(["network", "nsg", "list", "--resource-group", rg, "--query", "length(@)"])
    if nsgs and int(nsgs) > 0:
        report.ok(f"Network security groups: {nsgs}")
    else:
        report.warn("No network security groups found")


def check_storage(report: ValidationReport, config: Dict[str, Any]) -> None:
    report.section("Storage")
    rg, account = config["RESOURCE_GROUP"], config["STORAGE_ACCOUNT"]
    if not azcli.az_succeeds(["storage", "account", "show", "--name", account, "--resource-group", rg]):
        report.fail(f"Storage account not found: {account}")
        return
    sku = _tsv(["storage", "account", "show", "--name", account, "--resource-group", rg, "--query", "sku.name"])
    report.ok(f"Storage account {account} ({sku})")
    key = azcli.storage_account_key(rg, account)
    if not key:
        report.warn("Could not read storage account key")
        return
    share = config["FILE_SHARE_NAME"]
    share_args = ["storage", "share", "show", "--name", share, "--account-name", account, "--account-key", key]
    if azcli.az_succeeds(share_args):
        quota = _tsv(share_args + ["--query", "properties.quota"])
        report.ok(f"File share {share} (quota {quota} GB)")
    else:
        report.fail(f"File share not found: {share}")


def check_virtual_machines(report: ValidationReport, config: Dict[str, Any], expected: List[str]) -> List[str]:
    report.section("Virtual Machines")
    rg = config["RESOURCE_GROUP"]
    names = azcli.run_az(["vm", "list", "--resource-group", rg, "--query", "[].name"], check=False) or []
    if not names:
        report.fail("No VMs found")
        return []
    report.ok(f"VMs found: {len(names)}")
    for name in expected:
        if name not in names:
            report.fail(f"Expected VM missing: {name}")
    for name in names:
        state = vmops.get_power_state(rg, name)
        if state == vmops.RUNNING:
            report.ok(f"{name}: {state}")
        else:
            report.warn(f"{name}: {state}")
    return names


def check_nsg_rules(report: ValidationReport, config: Dict[str, Any]) -> None:
    report.section("Network Security Rules")
    rg = config["RESOURCE_GROUP"]
    nsg = _tsv(["network", "nsg", "list", "--resource-group", rg, "--query", "[0].name"])
    if not nsg:
        report.warn("No network security group to inspect")
        return
    for rule in REQUIRED_NSG_RULES:
        if azcli.az_succeeds(
            ["network", "nsg", "rule", "show", "--resource-group", rg, "--nsg-name", nsg, "--name", rule]
        ):
            report.ok(f"{nsg}: rule {rule} present")
        else:
            report.warn(f"{nsg}: rule {rule} missing")


def show_ssh_access(config: Dict[str, Any], names: List[str]) -> None:
    rg = config["RESOURCE_GROUP"]
    click.echo(click.style("\nSSH access:", bold=True))
    for name in names:
        ip = vmops.get_public_ip(rg, name)
        if ip:
            click.echo(f"  ssh {config['VM_ADMIN_USER']}@{ip}  # {name}")


def validate_deployment(
    config: Dict[str, Any], expected_vms: List[str], tf_dir: Optional[Path] = None
) -> int:
    """Run every check and return the exit code (1 if any check failed)."""
    report = ValidationReport()
    check_terraform_state(report, tf_dir)
    if check_resource_group(report, config):
        check_networking(report, config)
        check_storage(report, config)
        names = check_virtual_machines(report, config, expected_vms)
        check_nsg_rules(report, config)
        show_ssh_access(config, names)
    return report.summary()
