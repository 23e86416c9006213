"""Preflight checks run before any command that talks to Azure or Terraform."""

import shutil
import subprocess
import sys
from typing import Iterable

import click

import infra.azcli as azcli

TOOL_NAMES = {
    "az": "Azure CLI",
    "terraform": "Terraform",
    "ssh": "OpenSSH client",
}

INSTALL_URLS = {
    "az": "https://docs.microsoft.com/en-us/cli/azure/install-azure-cli",
    "terraform": "https://www.terraform.io/downloads",
    "ssh": "https://www.openssh.com/portable.html",
}


def _error(message: str) -> None:
    click.echo(click.style(f"[ERROR] {message}", fg="red", bold=True))


def check_dependencies(tools: Iterable[str]) -> None:
    """Check that each command-line tool is on PATH, exit 1 otherwise."""
    for exe in tools:
        location = shutil.which(exe)
        if location:
            click.echo(f"  {exe} command detected: {location}")
        else:
            name = TOOL_NAMES.get(exe, exe)
            _error(f"{name} is not installed. Please install it first.")
            if exe in INSTALL_URLS:
                click.echo(f"  Visit: {INSTALL_URLS[exe]}")
            sys.exit(1)


def check_azure_login() -> None:
    """Exit 1 unless ``az account show`` succeeds."""
    if not azcli.az_succeeds(["account", "show"]):
        _error("Not logged into Azure. Please login first.")
        click.echo("  Run: az login")
        sys.exit(1)
    account = azcli.run_az(
        ["account", "show", "--query", "name", "--output", "tsv"],
        as_json=False,
        check=False,
    )
    if account:
        click.echo(f"  Azure subscription: {account}")


def check_terraform_version() -> None:
    """Validate Terraform version is compatible."""
    try:
        result = subprocess.run(
            ["terraform", "-v"], capture_output=True, text=True, check=True
        )
        version_line = result.stdout.split("\n")[0]
        click.echo(f"  terraform version detected: {version_line}")
        version = version_line.split(" ")[1].replace("v", "")
        version_major = version.split(".")[0]

        if version_major != "1":
            _error(
                f"Terraform Version '{version}' is not supported. Please upgrade to >= v1.0.0"
            )
            sys.exit(1)
    except (subprocess.CalledProcessError, IndexError, FileNotFoundError) as e:
        _error(f"Failed to check Terraform version: {e}")
        sys.exit(1)


def preflight_check(tools: Iterable[str] = ("az",), require_login: bool = True) -> None:
    """Check required tools, the Azure login and the Terraform version."""
    tools = list(tools)
    click.echo(click.style("\nPreflight check..", fg="white", bold=True))
    check_dependencies(tools)
    if "terraform" in tools:
        check_terraform_version()
    if "az" in tools and require_login:
        check_azure_login()
    click.echo()
