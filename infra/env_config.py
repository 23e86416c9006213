"""Environment configuration shared by every command.

Names of Azure resources are derived from three short identifiers
(organisation, platform, environment) so that one set of values drives
the resource group, network, storage and file share names.
"""

import os
from typing import Any, Dict, Mapping, Optional

import click

DEFAULTS = {
    "ORGNM": "dats",
    "PLTNM": "beeux",
    "ENVNM": "dev",
    "AZURE_LOCATION": "centralus",
    "AZURE_ZONE": "1",
    "AZURE_SUBSCRIPTION_ID": "",
    "VM_SIZE": "Standard_B2s",
    "VM_DISK_SIZE": "20",
    "VM_DISK_SKU": "StandardSSD_LRS",
    "VM_ADMIN_USER": "beeuser",
    "LAPTOP_IP": "",
}

# Settings that may be given directly instead of being derived
OVERRIDABLE = (
    "RESOURCE_GROUP",
    "VNET_NAME",
    "SUBNET_NAME",
    "NSG_NAME",
    "STORAGE_ACCOUNT",
    "FILE_SHARE_NAME",
    "FILE_SHARE_MOUNT",
)


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Build the environment configuration.

    Args:
        environ: Mapping to read overrides from (defaults to ``os.environ``)

    Returns:
        dict of configuration keys, defaults overlaid with ``environ`` and the
        derived resource names added
    """
    if environ is None:
        environ = os.environ
    config = {key: environ.get(key, default) for key, default in DEFAULTS.items()}

    org, platform, env = config["ORGNM"], config["PLTNM"], config["ENVNM"]
    prefix = f"{org}-{platform}-{env}"
    config["RESOURCE_PREFIX"] = prefix
    derived = {
        "RESOURCE_GROUP": f"{prefix}-rg",
        "VNET_NAME": f"{prefix}-vnet",
        "SUBNET_NAME": f"{prefix}-subnet",
        "NSG_NAME": f"{prefix}-nsg",
        "STORAGE_ACCOUNT": f"{org}{platform}{env}stacct",
        "FILE_SHARE_NAME": f"{prefix}-shaf-afs",
        "FILE_SHARE_MOUNT": f"/mnt/{prefix}-shaf-afs",
    }
    for key in OVERRIDABLE:
        config[key] = environ.get(key) or derived[key]
    return config


def show_env_info(config: Dict[str, Any]) -> None:
    click.echo(click.style("\nEnvironment configuration:", fg="white", bold=True))
    for key in (
        "ORGNM",
        "PLTNM",
        "ENVNM",
        "AZURE_LOCATION",
        "AZURE_ZONE",
        "RESOURCE_GROUP",
        "VNET_NAME",
        "SUBNET_NAME",
        "NSG_NAME",
        "STORAGE_ACCOUNT",
        "FILE_SHARE_NAME",
        "FILE_SHARE_MOUNT",
        "VM_SIZE",
        "VM_ADMIN_USER",
    ):
        click.echo(f"  {key:<22} {config[key]}")
    subscription = config.get("AZURE_SUBSCRIPTION_ID") or "(current az account)"
    click.echo(f"  {'AZURE_SUBSCRIPTION_ID':<22} {subscription}")
