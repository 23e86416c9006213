"""Tests for computer name updates of legacy-named VMs."""

import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from infra import rename
from tests.fixtures.az_fakes import FakeAz

MAPPINGS = {"dats-beeux-dev-data": "dats-beeux-data-dev", "dats-beeux-dev-apps": "dats-beeux-apps-dev"}


def rename_fake():
    fake = FakeAz()
    fake.on(
        "az", "vm", "show",
        json_data={
            "hardwareProfile": {"vmSize": "Standard_B2ms"},
            "zones": ["1"],
            "osProfile": {"adminUsername": "beeuser", "computerName": "old"},
            "storageProfile": {"osDisk": {"name": "osdisk"}},
            "networkProfile": {"networkInterfaces": [{"id": "/sub/nic-1"}]},
        },
    )
    fake.on(
        "az", "network", "nic", "show",
        json_data={
            "ipConfigurations": [
                {"privateIPAddress": "10.0.1.4", "publicIPAddress": {"id": "/sub/pip-data"}}
            ]
        },
    )
    for old_name, new_name in MAPPINGS.items():
        fake.on("az", "vm", "show", old_name, "osProfile.computerName", stdout=new_name + "\n")
    return fake


class TestPlanRenames:
    def test_skips_missing_vms(self, capsys):
        fake = FakeAz().on("az", "vm", "show", "dats-beeux-dev-apps", "--output", "none", returncode=3)
        with patch("subprocess.run", fake):
            present = rename.plan_renames("rg", MAPPINGS)
        assert present == {"dats-beeux-dev-data": "dats-beeux-data-dev"}
        assert "dats-beeux-dev-apps not found" in capsys.readouterr().out


class TestDescribeVm:
    def test_collects_network_details(self):
        with patch("subprocess.run", rename_fake()):
            details = rename.describe_vm("rg", "dats-beeux-dev-data")
        assert details["private_ip"] == "10.0.1.4"
        assert details["public_ip"] == "pip-data"
        assert details["zone"] == "1"


class TestRenameVms:
    def test_updates_computer_names_only(self, capsys):
        fake = rename_fake()
        with patch("subprocess.run", fake):
            code = rename.rename_vms("rg", MAPPINGS, "beeuser", assume_yes=True)
        assert code == 0
        updates = fake.calls_matching("az", "vm", "update", "--set")
        assert len(updates) == 2
        assert "osProfile.computerName=dats-beeux-data-dev" in updates[0]
        assert not fake.called("ssh")
        assert "az vm restart --resource-group rg --name dats-beeux-dev-data" in capsys.readouterr().out

    def test_sets_hostname_over_ssh(self):
        fake = rename_fake().on("az", "vm", "show", "publicIps", stdout="20.1.2.3\n")
        with patch("subprocess.run", fake):
            rename.rename_vms("rg", {"dats-beeux-dev-data": "dats-beeux-data-dev"}, "beeuser",
                              set_hostname=True, assume_yes=True)
        ssh = fake.calls_matching("ssh", "beeuser@20.1.2.3")
        assert ssh[0][-1] == "sudo hostnamectl set-hostname dats-beeux-data-dev"

    def test_update_failure_exit_code(self):
        fake = rename_fake().on("az", "vm", "update", "dats-beeux-dev-apps", returncode=1)
        with patch("subprocess.run", fake):
            assert rename.rename_vms("rg", MAPPINGS, "beeuser", assume_yes=True) == 1

    def test_declined(self):
        fake = rename_fake()
        with patch("subprocess.run", fake), patch("click.prompt", return_value="n"):
            assert rename.rename_vms("rg", MAPPINGS, "beeuser") == 0
        assert not fake.called("az", "vm", "update")

    def test_no_mappings(self):
        fake = FakeAz()
        with patch("subprocess.run", fake):
            assert rename.rename_vms("rg", {}, "beeuser") == 0
        assert fake.calls == []
