"""Tests for single VM management."""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from infra import vmops
from infra.env_config import load_env_config
from infra.exceptions import BeeuxError
from tests.fixtures.az_fakes import FakeAz

CONFIG = load_env_config({})
NAME = "dats-beeux-dev-ubuntu-dev-02"


def with_state(state):
    return FakeAz().on("az", "vm", "get-instance-view", NAME, stdout=state + "\n")


class TestPowerState:
    def test_running(self):
        with patch("subprocess.run", with_state(vmops.RUNNING)) as fake:
            assert vmops.get_power_state("rg", NAME) == vmops.RUNNING
        assert "tsv" in fake.calls[0]

    def test_missing_vm(self):
        fake = FakeAz().on("az", "vm", "get-instance-view", returncode=3, stderr="ResourceNotFound")
        with patch("subprocess.run", fake):
            assert vmops.get_power_state("rg", NAME) == vmops.NOT_FOUND

    def test_empty_state_is_unknown(self):
        with patch("subprocess.run", FakeAz()):
            assert vmops.get_power_state("rg", NAME) == vmops.UNKNOWN


class TestVmDetails:
    def test_flattens_show_output(self):
        fake = FakeAz().on(
            "az", "vm", "show", "--show-details",
            json_data={
                "name": NAME,
                "powerState": "VM running",
                "hardwareProfile": {"vmSize": "Standard_B2s"},
                "location": "centralus",
                "zones": ["1"],
                "osProfile": {"computerName": "ubuntu-dev-02"},
                "publicIps": "20.1.2.3",
                "privateIps": "10.0.1.10",
                "storageProfile": {"osDisk": {"name": "osdisk", "diskSizeGb": 30}},
            },
        )
        with patch("subprocess.run", fake):
            details = vmops.vm_details("rg", NAME)
        assert details["size"] == "Standard_B2s"
        assert details["zones"] == "1"
        assert details["os_disk_size_gb"] == 30
        assert details["computer_name"] == "ubuntu-dev-02"


class TestStartStop:
    def test_start_deallocated_vm(self, capsys):
        fake = with_state(vmops.DEALLOCATED)
        with patch("subprocess.run", fake):
            assert vmops.start("ubuntu-dev-02", CONFIG, assume_yes=True) == 0
        assert fake.called("az", "vm", "start", NAME, "--no-wait")
        assert "$0.056/hour" in capsys.readouterr().out

    def test_start_already_running(self):
        fake = with_state(vmops.RUNNING)
        with patch("subprocess.run", fake):
            vmops.start("ubuntu-dev-02", CONFIG, assume_yes=True)
        assert not fake.called("az", "vm", "start")

    def test_start_declined(self):
        fake = with_state(vmops.DEALLOCATED)
        with patch("subprocess.run", fake), patch("click.prompt", return_value="N"):
            vmops.start("ubuntu-dev-02", CONFIG)
        assert not fake.called("az", "vm", "start")

    def test_start_missing_vm(self):
        fake = FakeAz().on("az", "vm", "get-instance-view", returncode=3)
        with patch("subprocess.run", fake):
            with pytest.raises(BeeuxError, match="not found"):
                vmops.start("ubuntu-dev-02", CONFIG, assume_yes=True)

    def test_stop_running_vm(self):
        fake = with_state(vmops.RUNNING)
        with patch("subprocess.run", fake):
            vmops.stop("ubuntu-dev-02", CONFIG, assume_yes=True)
        assert fake.called("az", "vm", "deallocate", NAME)

    def test_stop_already_deallocated(self):
        fake = with_state(vmops.DEALLOCATED)
        with patch("subprocess.run", fake):
            vmops.stop("ubuntu-dev-02", CONFIG, assume_yes=True)
        assert not fake.called("az", "vm", "deallocate")

    def test_restart_requires_running(self):
        with patch("subprocess.run", with_state(vmops.DEALLOCATED)):
            with pytest.raises(BeeuxError, match="not running"):
                vmops.restart("ubuntu-dev-02", CONFIG, assume_yes=True)


class TestConnect:
    def test_connects_with_admin_user(self):
        fake = with_state(vmops.RUNNING).on("az", "vm", "show", "publicIps", stdout="20.1.2.3\n")
        with patch("subprocess.run", fake), patch("subprocess.call", return_value=0) as call:
            assert vmops.connect("ubuntu-dev-02", CONFIG) == 0
        call.assert_called_once_with(["ssh", "beeuser@20.1.2.3"])

    def test_no_public_ip(self):
        with patch("subprocess.run", with_state(vmops.RUNNING)):
            with pytest.raises(BeeuxError, match="No public IP"):
                vmops.connect("ubuntu-dev-02", CONFIG)
