"""Tests for VM deletion and associated resource discovery."""

import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from infra import cleanup
from infra.env_config import load_env_config
from tests.fixtures.az_fakes import FakeAz

CONFIG = load_env_config({})
SUB = "/subscriptions/0000/resourceGroups/dats-beeux-dev-rg/providers"
NIC_ID = f"{SUB}/Microsoft.Network/networkInterfaces/ubuntu-dev-03-nic"
PIP_ID = f"{SUB}/Microsoft.Network/publicIPAddresses/ubuntu-dev-03-pip"
NSG_ID = f"{SUB}/Microsoft.Network/networkSecurityGroups/ubuntu-dev-03-nsg"
SUBNET_ID = f"{SUB}/Microsoft.Network/virtualNetworks/dats-beeux-dev-vnet/subnets/default"


def vm_fake():
    fake = FakeAz()
    fake.on(
        "az", "vm", "show",
        json_data={
            "storageProfile": {"osDisk": {"name": "ubuntu-dev-03-osdisk"}},
            "networkProfile": {"networkInterfaces": [{"id": NIC_ID}]},
        },
    )
    fake.on(
        "az", "network", "nic", "show",
        json_data={
            "ipConfigurations": [
                {"publicIPAddress": {"id": PIP_ID}, "subnet": {"id": SUBNET_ID}}
            ],
            "networkSecurityGroup": {"id": NSG_ID},
        },
    )
    return fake


class TestFindAssociatedResources:
    def test_resolves_everything(self):
        with patch("subprocess.run", vm_fake()):
            resources = cleanup.find_associated_resources("rg", "vm")
        assert resources == {
            "nic_id": NIC_ID,
            "os_disk": "ubuntu-dev-03-osdisk",
            "public_ip_id": PIP_ID,
            "nsg_id": NSG_ID,
            "vnet": "dats-beeux-dev-vnet",
        }

    def test_vm_without_nic(self):
        fake = FakeAz().on("az", "vm", "show", json_data={"storageProfile": {}})
        with patch("subprocess.run", fake):
            resources = cleanup.find_associated_resources("rg", "vm")
        assert resources["nic_id"] == ""
        assert not fake.called("az", "network", "nic", "show")


class TestDeleteAssociatedResources:
    RESOURCES = {
        "nic_id": NIC_ID,
        "os_disk": "ubuntu-dev-03-osdisk",
        "public_ip_id": PIP_ID,
        "nsg_id": NSG_ID,
        "vnet": "dats-beeux-dev-vnet",
    }

    def test_deletes_all_but_vnet(self):
        fake = FakeAz()
        with patch("subprocess.run", fake):
            assert cleanup.delete_associated_resources("rg", self.RESOURCES) == []
        assert fake.called("az", "disk", "delete", "ubuntu-dev-03-osdisk", "--no-wait")
        assert fake.called("az", "network", "nic", "delete", NIC_ID)
        assert fake.called("az", "network", "public-ip", "delete", PIP_ID)
        assert fake.called("az", "network", "nsg", "delete", NSG_ID)
        assert not fake.called("az", "network", "vnet", "delete")

    def test_failure_is_a_warning(self, capsys):
        fake = FakeAz().on("az", "network", "public-ip", "delete", returncode=3)
        with patch("subprocess.run", fake):
            warnings = cleanup.delete_associated_resources("rg", self.RESOURCES)
        assert warnings == ["Public IP ubuntu-dev-03-pip"]
        assert "may already be deleted" in capsys.readouterr().out
        assert fake.called("az", "network", "nsg", "delete")


class TestCleanupVm:
    def test_absent_vm_is_not_an_error(self, capsys):
        fake = FakeAz().on("az", "vm", "show", returncode=3)
        with patch("subprocess.run", fake):
            assert cleanup.cleanup_vm("ubuntu-dev-03", CONFIG) == 0
        assert "not found" in capsys.readouterr().out
        assert not fake.called("az", "vm", "delete")

    def test_confirmed_deletion(self, capsys):
        fake = vm_fake()
        answers = iter(["ubuntu-dev-03", "DELETE", "YES I AM SURE"])
        with patch("subprocess.run", fake), patch("click.prompt", lambda *a, **k: next(answers)):
            assert cleanup.cleanup_vm("ubuntu-dev-03", CONFIG) == 0
        delete = fake.calls_matching("az", "vm", "delete")[0]
        assert "dats-beeux-dev-ubuntu-dev-03" in delete
        assert delete[-2:] == ["--force-deletion", "true"]
        out = capsys.readouterr().out
        assert "preserved" in out
        assert "$40.16" in out

    def test_wrong_name_cancels(self, capsys):
        fake = vm_fake()
        with patch("subprocess.run", fake), patch("click.prompt", return_value="ubuntu-dev-04"):
            assert cleanup.cleanup_vm("ubuntu-dev-03", CONFIG) == 0
        assert "doesn't match" in capsys.readouterr().out
        assert not fake.called("az", "vm", "delete")
