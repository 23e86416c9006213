"""Tests for the VM manifest loader and environment configuration."""

import os
import sys
import textwrap

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from infra import config_loader
from infra.env_config import load_env_config
from infra.exceptions import ConfigurationError


def write_manifest(tmp_path, body):
    path = tmp_path / "vms.yml"
    path.write_text(textwrap.dedent(body))
    return path


class TestBundledManifest:
    def test_loads_three_roles(self):
        manifest = config_loader.load_manifest()
        assert config_loader.list_roles(manifest) == ["data", "apps", "infr"]

    def test_defaults_are_merged(self):
        manifest = config_loader.load_manifest()
        apps = config_loader.get_vm_by_role(manifest, "apps")
        assert apps["size"] == "Standard_B2s"
        assert apps["template"] == "bicep/vm-main.bicep"
        data = config_loader.get_vm_by_role(manifest, "data")
        assert data["size"] == "Standard_B2ms"

    def test_rename_mappings(self):
        manifest = config_loader.load_manifest()
        assert config_loader.rename_mappings(manifest) == {
            "dats-beeux-dev-data": "dats-beeux-data-dev",
            "dats-beeux-dev-apps": "dats-beeux-apps-dev",
        }

    def test_terraform_settings(self):
        terraform = config_loader.load_manifest()["terraform"]
        assert terraform["var_files"][0] == "terraform.tfvars"
        assert len(terraform["var_files"]) == 6
        assert terraform["expected_vm_count"] == 5


class TestManifestValidation:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            config_loader.load_manifest(tmp_path / "absent.yml")

    def test_invalid_yaml(self, tmp_path):
        path = write_manifest(tmp_path, "vms: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Could not parse"):
            config_loader.load_manifest(path)

    def test_missing_required_key(self, tmp_path):
        path = write_manifest(
            tmp_path,
            """
            vms:
              - name: vm-a
                role: data
            """,
        )
        with pytest.raises(ConfigurationError, match="private_ip"):
            config_loader.load_manifest(path)

    def test_ip_outside_subnet(self, tmp_path):
        path = write_manifest(
            tmp_path,
            """
            subnet_cidr: 10.0.1.0/24
            vms:
              - {name: vm-a, role: data, private_ip: 10.0.2.4}
            """,
        )
        with pytest.raises(ConfigurationError, match="outside subnet"):
            config_loader.load_manifest(path)

    def test_invalid_ip(self, tmp_path):
        path = write_manifest(
            tmp_path,
            """
            vms:
              - {name: vm-a, role: data, private_ip: 10.0.1.300}
            """,
        )
        with pytest.raises(ConfigurationError, match="Invalid private IP"):
            config_loader.load_manifest(path)

    def test_duplicate_ip(self, tmp_path):
        path = write_manifest(
            tmp_path,
            """
            vms:
              - {name: vm-a, role: data, private_ip: 10.0.1.4}
              - {name: vm-b, role: apps, private_ip: 10.0.1.4}
            """,
        )
        with pytest.raises(ConfigurationError, match="Duplicate private_ip"):
            config_loader.load_manifest(path)

    def test_unknown_role(self):
        manifest = config_loader.load_manifest()
        with pytest.raises(ConfigurationError, match="data, apps, infr"):
            config_loader.get_vm_by_role(manifest, "web")


class TestEnvConfig:
    def test_defaults_and_derived_names(self):
        config = load_env_config({})
        assert config["RESOURCE_GROUP"] == "dats-beeux-dev-rg"
        assert config["STORAGE_ACCOUNT"] == "datsbeeuxdevstacct"
        assert config["FILE_SHARE_NAME"] == "dats-beeux-dev-shaf-afs"
        assert config["FILE_SHARE_MOUNT"] == "/mnt/dats-beeux-dev-shaf-afs"
        assert config["VNET_NAME"] == "dats-beeux-dev-vnet"
        assert config["AZURE_LOCATION"] == "centralus"
        assert config["VM_ADMIN_USER"] == "beeuser"

    def test_environment_changes_derived_names(self):
        config = load_env_config({"ENVNM": "qa", "AZURE_LOCATION": "eastus"})
        assert config["RESOURCE_GROUP"] == "dats-beeux-qa-rg"
        assert config["STORAGE_ACCOUNT"] == "datsbeeuxqastacct"
        assert config["AZURE_LOCATION"] == "eastus"

    def test_explicit_override(self):
        config = load_env_config({"RESOURCE_GROUP": "custom-rg"})
        assert config["RESOURCE_GROUP"] == "custom-rg"
        assert config["NSG_NAME"] == "dats-beeux-dev-nsg"
