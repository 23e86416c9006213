"""Unit tests for the beeuxctl command line (prerequisites and guard rails)."""

import json
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from beeuxctl import _command_name, cli
from tests.fixtures.az_fakes import FakeAz, logged_in_az, which_everything, which_nothing

CLEAN_ENV = {"ORGNM": "dats", "PLTNM": "beeux", "ENVNM": "dev", "RESOURCE_GROUP": "", "AZURE_SUBSCRIPTION_ID": ""}


class CliTestCase(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()

    def invoke(self, fake, args, which=which_everything, input=None):
        with patch("subprocess.run", fake), patch("shutil.which", which):
            return self.runner.invoke(cli, args, input=input, env=CLEAN_ENV)


class TestMissingAzureCli(CliTestCase):
    """Every Azure command refuses to run without the az binary."""

    COMMANDS = [
        ["provision", "deploy", "ubuntu-dev-01", "-y"],
        ["provision", "bulk", "1", "2", "-y"],
        ["deploy", "data", "-k", "ssh-ed25519 AAAA"],
        ["shutdown", "-y"],
        ["cleanup", "ubuntu-dev-01"],
        ["fleet", "list"],
    ]

    def test_exit_code_and_install_message(self):
        for args in self.COMMANDS:
            with self.subTest(args=args):
                fake = FakeAz()
                result = self.invoke(fake, args, which=which_nothing)
                self.assertEqual(result.exit_code, 1)
                self.assertIn("install", result.output.lower())
                self.assertEqual(fake.calls, [])


class TestNotLoggedIn(CliTestCase):
    """Nothing mutating runs when az account show fails."""

    def setUp(self):
        super().setUp()
        self.fake = FakeAz().on("az", "account", "show", returncode=1, stderr="Please run 'az login'")
        self.fake.on("az", "vm", "list", json_data=["vm-a"])

    def assert_nothing_mutating(self):
        for verb in ("deallocate", "delete", "create", "start", "update"):
            self.assertFalse(
                any(verb in call for call in self.fake.calls),
                f"unexpected az {verb} call: {self.fake.calls}",
            )

    def test_shutdown(self):
        result = self.invoke(self.fake, ["shutdown", "-y"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Not logged into Azure", result.output)
        self.assertIn("az login", result.output)
        self.assert_nothing_mutating()

    def test_bulk(self):
        result = self.invoke(self.fake, ["provision", "bulk", "1", "3", "-y"])
        self.assertEqual(result.exit_code, 1)
        self.assert_nothing_mutating()

    def test_cleanup(self):
        result = self.invoke(
            self.fake, ["cleanup", "ubuntu-dev-01"], input="ubuntu-dev-01\nDELETE\nYES I AM SURE\n"
        )
        self.assertEqual(result.exit_code, 1)
        self.assert_nothing_mutating()

    def test_role_deploy(self):
        result = self.invoke(self.fake, ["deploy", "apps", "-k", "ssh-rsa AAAA", "--no-mount-share"])
        self.assertEqual(result.exit_code, 1)
        self.assert_nothing_mutating()


class TestProvisionGuards(CliTestCase):
    def test_create_rejects_invalid_name(self):
        with self.runner.isolated_filesystem() as tmp:
            vms_dir = Path(tmp) / "vms"
            template = vms_dir / "ubuntu-dev-01" / "bicep"
            template.mkdir(parents=True)
            (template / "main.bicep").write_text("// template\n")
            (template / "parameters.json").write_text(json.dumps({"parameters": {}}))
            before = sorted(p.name for p in vms_dir.iterdir())

            fake = logged_in_az()
            result = self.invoke(fake, ["provision", "create", "ubuntu-dev-7", "--vms-dir", str(vms_dir)])

            self.assertEqual(result.exit_code, 1)
            self.assertIn("Invalid VM name format", result.output)
            self.assertEqual(sorted(p.name for p in vms_dir.iterdir()), before)
            self.assertFalse(fake.called("az", "deployment"))
            self.assertFalse(fake.called("az", "group", "create"))

    def test_create_valid_name(self):
        with self.runner.isolated_filesystem() as tmp:
            vms_dir = Path(tmp) / "vms"
            template = vms_dir / "ubuntu-dev-01" / "bicep"
            template.mkdir(parents=True)
            (template / "main.bicep").write_text("// template\n")
            (template / "parameters.json").write_text(
                json.dumps({"parameters": {"vmName": {"value": "ubuntu-dev-01"}}})
            )
            result = self.invoke(logged_in_az(), ["provision", "create", "ubuntu-dev-05", "--vms-dir", str(vms_dir)])

            self.assertEqual(result.exit_code, 0, result.output)
            params = json.loads((vms_dir / "ubuntu-dev-05" / "bicep" / "parameters.json").read_text())
            self.assertEqual(params["parameters"]["vmName"]["value"], "ubuntu-dev-05")

    def test_bulk_refuses_more_than_40(self):
        fake = logged_in_az()
        result = self.invoke(fake, ["provision", "bulk", "1", "41", "-y", "--delay", "0"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Maximum supported VMs is 40", result.output)
        self.assertFalse(fake.called("az", "deployment"))
        self.assertFalse(fake.called("az", "group", "create"))


class TestShutdown(CliTestCase):
    def test_empty_resource_group(self):
        fake = logged_in_az().on("az", "vm", "list", json_data=[])
        result = self.invoke(fake, ["shutdown", "--resource-group", "empty-rg"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No VMs found", result.output)
        self.assertFalse(fake.called("az", "vm", "deallocate"))

    def test_zero_poll_interval_is_a_usage_error(self):
        for option in ("--poll-interval", "--max-wait"):
            with self.subTest(option=option):
                fake = logged_in_az().on("az", "vm", "list", json_data=["vm-a"])
                result = self.invoke(fake, ["shutdown", "-y", option, "0"])
                self.assertEqual(result.exit_code, 2)
                self.assertIn(option, result.output)
                self.assertEqual(fake.calls, [])


class TestCleanupConfirmations(CliTestCase):
    def fake_with_vm(self):
        fake = logged_in_az()
        fake.on(
            "az", "vm", "show",
            json_data={
                "name": "dats-beeux-dev-ubuntu-dev-01",
                "storageProfile": {"osDisk": {"name": "osdisk-01"}},
                "networkProfile": {"networkInterfaces": [{"id": "/sub/rg/nic-01"}]},
            },
        )
        fake.on("az", "network", "nic", "show", json_data={"ipConfigurations": []})
        return fake

    def test_all_three_phrases_delete(self):
        fake = self.fake_with_vm()
        result = self.invoke(
            fake, ["cleanup", "ubuntu-dev-01"], input="ubuntu-dev-01\nDELETE\nYES I AM SURE\n"
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(fake.called("az", "vm", "delete", "--force-deletion"))
        self.assertTrue(fake.called("az", "disk", "delete", "osdisk-01"))

    def test_any_wrong_phrase_cancels(self):
        wrong_inputs = [
            "ubuntu-dev-02\nDELETE\nYES I AM SURE\n",
            "ubuntu-dev-01\ndelete\nYES I AM SURE\n",
            "ubuntu-dev-01\nDELETE\nyes i am sure\n",
            "ubuntu-dev-01\nDELETE\nYES\n",
        ]
        for answers in wrong_inputs:
            with self.subTest(answers=answers):
                fake = self.fake_with_vm()
                result = self.invoke(fake, ["cleanup", "ubuntu-dev-01"], input=answers)
                self.assertEqual(result.exit_code, 0)
                self.assertIn("cancelled", result.output)
                self.assertFalse(fake.called("az", "vm", "delete"))
                self.assertFalse(fake.called("az", "disk", "delete"))
                self.assertFalse(fake.called("az", "network", "delete"))


class TestRoleDeploy(CliTestCase):
    def test_rejects_bad_ssh_key(self):
        fake = logged_in_az()
        result = self.invoke(fake, ["deploy", "data", "-k", "not-a-key", "--no-mount-share"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("ssh-rsa", result.output)
        self.assertFalse(fake.called("az", "deployment"))

    def test_unknown_role(self):
        fake = logged_in_az()
        result = self.invoke(fake, ["deploy", "web", "-k", "ssh-rsa AAAA", "--no-mount-share"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Unknown VM role", result.output)

    def test_help_short_option(self):
        result = self.runner.invoke(cli, ["deploy", "-h"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("--what-if", result.output)


class TestEnvAndHistory(CliTestCase):
    def test_env_shows_derived_names(self):
        result = self.runner.invoke(cli, ["env"], env=dict(CLEAN_ENV, ENVNM="qa"))
        self.assertEqual(result.exit_code, 0)
        self.assertIn("dats-beeux-qa-rg", result.output)
        self.assertIn("(current az account)", result.output)

    def test_history_reads_registry(self):
        from infra.logging_standard import REGISTRY_HEADER, REGISTRY_NAME

        row = "2024-05-01 09:31:15|id-1|shutdown|/bin/beeuxctl|dev1|/tmp|logs/x.log|0|75s|dats|beeux|dev"
        with self.runner.isolated_filesystem():
            Path(REGISTRY_NAME).write_text(f"{REGISTRY_HEADER}\n{row}\n")
            result = self.runner.invoke(cli, ["history", "--command", "shutdown"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("shutdown: 1 run(s), last run succeeded", result.output)

    def test_history_without_registry(self):
        with self.runner.isolated_filesystem():
            result = self.runner.invoke(cli, ["history"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("No executions recorded", result.output)

    def test_history_rejects_non_positive_limit(self):
        for limit in ("0", "-3"):
            with self.subTest(limit=limit):
                with self.runner.isolated_filesystem():
                    result = self.runner.invoke(cli, ["history", "--limit", limit])
                self.assertEqual(result.exit_code, 2)
                self.assertIn("--limit", result.output)


class TestVmCommands(CliTestCase):
    def test_stop_running_vm(self):
        fake = logged_in_az().on("az", "vm", "get-instance-view", stdout="VM running\n")
        result = self.invoke(fake, ["vm", "stop", "ubuntu-dev-02", "-y"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(fake.called("az", "vm", "deallocate", "dats-beeux-dev-ubuntu-dev-02"))

    def test_restart_stopped_vm_fails(self):
        fake = logged_in_az().on("az", "vm", "get-instance-view", stdout="VM deallocated\n")
        result = self.invoke(fake, ["vm", "restart", "ubuntu-dev-02", "-y"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("[ERROR]", result.output)
        self.assertFalse(fake.called("az", "vm", "restart"))


class TestCommandName(unittest.TestCase):
    def test_group_and_subcommand(self):
        self.assertEqual(_command_name(["provision", "bulk", "1", "3"]), "provision-bulk")

    def test_top_level_command(self):
        self.assertEqual(_command_name(["cleanup", "ubuntu-dev-01"]), "cleanup")

    def test_skips_option_values(self):
        self.assertEqual(_command_name(["--manifest", "vms.yml", "deploy", "data"]), "deploy")

    def test_no_command(self):
        self.assertIsNone(_command_name(["--help"]))


class TestVersion(unittest.TestCase):
    def test_version_option(self):
        result = CliRunner().invoke(cli, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("beeuxctl", result.output)


if __name__ == "__main__":
    unittest.main()
