#!/usr/bin/env python
import logging
import sys
from pathlib import Path

import click

import infra.bicep as bicep
import infra.cleanup as cleanup
import infra.config_loader as config_loader
import infra.fleet as fleet
import infra.helpers as helpers
import infra.logging_standard as logging_standard
import infra.prepare as prepare
import infra.provisioning as provisioning
import infra.rename as rename
import infra.tfwrapper as tfwrapper
import infra.validation as validation
import infra.vmops as vmops
from infra.env_config import load_env_config, show_env_info
from infra.exceptions import BeeuxError
from infra.preflight import preflight_check

__version__ = "0.3"

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def my_excepthook(exc_type, exc_value, exc_traceback):
    click.echo(
        click.style(f"Unhandled error: {exc_type.__name__}: {exc_value}", fg="red", bold=True),
        err=True,
    )


def _show_banner():
    banner = (
        "\n"
        " _                                 _   _ \n"
        "| |__   ___  ___ _   ___  __   ___| |_| |\n"
        "| '_ \\ / _ \\/ _ \\ | | \\ \\/ /  / __| __| |\n"
        "| |_) |  __/  __/ |_| |>  <  | (__| |_| |\n"
        "|_.__/ \\___|\\___|\\__,_/_/\\_\\  \\___|\\__|_|\n"
    )
    click.echo(banner)


def _run(func, *args, **kwargs):
    """Call a workflow, turning BeeuxError into ``[ERROR]`` and exit 1."""
    try:
        code = func(*args, **kwargs)
    except BeeuxError as e:
        helpers.fail(str(e))
    else:
        sys.exit(code or 0)


def _load_manifest(ctx):
    try:
        return config_loader.load_manifest(ctx.obj["manifest_path"])
    except BeeuxError as e:
        helpers.fail(str(e))


yes_option = click.option(
    "--yes", "-y", "assume_yes", is_flag=True, default=False, help="Answer yes to confirmations"
)
vms_dir_option = click.option(
    "--vms-dir",
    default=provisioning.DEFAULT_VMS_DIR,
    show_default=True,
    help="Directory holding one configuration folder per VM",
)


@click.version_option(version=__version__, prog_name="beeuxctl")
@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--debug", is_flag=True, default=False, help="Dump exception tracebacks and debug logs")
@click.option("--manifest", default=None, help="Path to the VM manifest (YAML)")
@click.pass_context
def cli(ctx, debug, manifest):
    """
    beeuxctl provisions, manages and tears down the BeeUx development VMs on Azure

    For help with a specific command type:

    beeuxctl [COMMAND] --help

    """
    if debug:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(logging_standard.LOG_FORMAT))
        logging.getLogger("infra").addHandler(console)
        logging.getLogger("infra").setLevel(logging.DEBUG)
    else:
        sys.excepthook = my_excepthook
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_env_config()
    ctx.obj["manifest_path"] = manifest


@cli.command()
@click.pass_context
def env(ctx):
    """Show the environment configuration and derived resource names"""
    show_env_info(ctx.obj["config"])


# ---------------------------------------------------------------- provision


@cli.group()
def provision():
    """Create and deploy ubuntu-dev-NN VMs"""
    pass


@provision.command("create")
@click.argument("vm_name")
@vms_dir_option
@yes_option
def provision_create(vm_name, vms_dir, assume_yes):
    """Create the configuration directory for VM_NAME (ubuntu-dev-NN)"""
    preflight_check(["az"])
    _run(provisioning.create_vm_config, vm_name, vms_dir, assume_yes)


@provision.command("deploy")
@click.argument("vm_name")
@vms_dir_option
@click.option(
    "--ssh-key-file",
    default=str(provisioning.DEFAULT_SSH_KEY_PATH),
    show_default=True,
    help="SSH public key installed for the admin user",
)
@yes_option
@click.pass_context
def provision_deploy(ctx, vm_name, vms_dir, ssh_key_file, assume_yes):
    """Deploy VM_NAME to Azure"""
    preflight_check(["az"])
    _run(provisioning.deploy_one, vm_name, vms_dir, ctx.obj["config"], ssh_key_file, assume_yes)


@provision.command("bulk")
@click.argument("start")
@click.argument("end")
@vms_dir_option
@click.option(
    "--ssh-key-file",
    default=str(provisioning.DEFAULT_SSH_KEY_PATH),
    show_default=True,
    help="SSH public key installed for the admin user",
)
@click.option(
    "--delay",
    default=provisioning.BULK_DELAY_SECONDS,
    show_default=True,
    help="Seconds to wait between deployments",
)
@yes_option
@click.pass_context
def provision_bulk(ctx, start, end, vms_dir, ssh_key_file, delay, assume_yes):
    """Deploy ubuntu-dev-START through ubuntu-dev-END"""
    preflight_check(["az"])
    _run(
        provisioning.provision_multiple_vms,
        start,
        end,
        vms_dir,
        ctx.obj["config"],
        ssh_key_path=ssh_key_file,
        delay=delay,
        assume_yes=assume_yes,
    )


# ---------------------------------------------------------------- vm


@cli.group()
def vm():
    """Manage a single VM (fleet name or role VM name)"""
    pass


@vm.command("info")
@click.argument("vm_name")
@click.pass_context
def vm_info(ctx, vm_name):
    """Show status, size and addresses of VM_NAME"""
    preflight_check(["az"])
    _run(vmops.show_vm_info, vm_name, ctx.obj["config"])


@vm.command("start")
@click.argument("vm_name")
@yes_option
@click.pass_context
def vm_start(ctx, vm_name, assume_yes):
    """Start VM_NAME"""
    preflight_check(["az"])
    _run(vmops.start, vm_name, ctx.obj["config"], assume_yes)


@vm.command("stop")
@click.argument("vm_name")
@yes_option
@click.pass_context
def vm_stop(ctx, vm_name, assume_yes):
    """Deallocate VM_NAME"""
    preflight_check(["az"])
    _run(vmops.stop, vm_name, ctx.obj["config"], assume_yes)


@vm.command("restart")
@click.argument("vm_name")
@yes_option
@click.pass_context
def vm_restart(ctx, vm_name, assume_yes):
    """Restart VM_NAME"""
    preflight_check(["az"])
    _run(vmops.restart, vm_name, ctx.obj["config"], assume_yes)


@vm.command("connect")
@click.argument("vm_name")
@click.pass_context
def vm_connect(ctx, vm_name):
    """Open an SSH session to VM_NAME"""
    preflight_check(["az", "ssh"])
    _run(vmops.connect, vm_name, ctx.obj["config"])


# ---------------------------------------------------------------- fleet


@cli.group("fleet")
def fleet_group():
    """Operate on every configured ubuntu-dev VM"""
    pass


@fleet_group.command("list")
@vms_dir_option
@click.pass_context
def fleet_list(ctx, vms_dir):
    """List configured VMs with status and cost"""
    preflight_check(["az"])
    try:
        fleet.list_vms(vms_dir, ctx.obj["config"])
    except BeeuxError as e:
        helpers.fail(str(e))


@fleet_group.command("start-all")
@vms_dir_option
@yes_option
@click.pass_context
def fleet_start_all(ctx, vms_dir, assume_yes):
    """Start every deployed VM"""
    preflight_check(["az"])
    _run(fleet.start_all, vms_dir, ctx.obj["config"], assume_yes)


@fleet_group.command("stop-all")
@vms_dir_option
@yes_option
@click.pass_context
def fleet_stop_all(ctx, vms_dir, assume_yes):
    """Deallocate every deployed VM"""
    preflight_check(["az"])
    _run(fleet.stop_all, vms_dir, ctx.obj["config"], assume_yes)


@fleet_group.command("restart-all")
@vms_dir_option
@yes_option
@click.pass_context
def fleet_restart_all(ctx, vms_dir, assume_yes):
    """Restart every running VM"""
    preflight_check(["az"])
    _run(fleet.restart_all, vms_dir, ctx.obj["config"], assume_yes)


@cli.command()
@click.option("--resource-group", "-g", default=None, help="Resource group (default from environment)")
@click.option(
    "--poll-interval",
    default=fleet.DEFAULT_POLL_INTERVAL,
    type=click.IntRange(min=1),
    show_default=True,
    help="Seconds between status checks",
)
@click.option(
    "--max-wait",
    default=fleet.DEFAULT_MAX_WAIT,
    type=click.IntRange(min=1),
    show_default=True,
    help="Give up after this many seconds",
)
@yes_option
@click.pass_context
def shutdown(ctx, resource_group, poll_interval, max_wait, assume_yes):
    """Deallocate every VM in the resource group and wait until done"""
    preflight_check(["az"])
    _run(
        fleet.shutdown_resource_group,
        resource_group or ctx.obj["config"]["RESOURCE_GROUP"],
        poll_interval=poll_interval,
        max_wait=max_wait,
        assume_yes=assume_yes,
    )


@cli.command("cleanup")
@click.argument("vm_name")
@click.pass_context
def cleanup_command(ctx, vm_name):
    """Permanently delete VM_NAME and its disk, NIC, public IP and NSG"""
    preflight_check(["az"])
    _run(cleanup.cleanup_vm, vm_name, ctx.obj["config"])


# ---------------------------------------------------------------- role VMs


@cli.command()
@click.argument("role")
@click.option("-k", "--ssh-key", default="", help="SSH public key (ssh-rsa or ssh-ed25519)")
@click.option("-w", "--what-if", "run_what_if", is_flag=True, default=False, help="Preview changes only")
@click.option(
    "--mount-share/--no-mount-share",
    default=True,
    help="Mount the Azure File Share on the VM after deployment",
)
@click.option("--root", default=".", show_default=True, help="Directory template paths are relative to")
@click.pass_context
def deploy(ctx, role, ssh_key, run_what_if, mount_share, root):
    """Deploy the manifest VM for ROLE at subscription scope"""
    _show_banner()
    preflight_check(["az", "ssh"] if mount_share and not run_what_if else ["az"])
    manifest = _load_manifest(ctx)
    _run(
        lambda: bicep.deploy_role(
            config_loader.get_vm_by_role(manifest, role),
            ctx.obj["config"],
            ssh_key,
            run_what_if=run_what_if,
            mount_share=mount_share,
            root=root,
        )
    )


@cli.command("reuse-disk")
@click.argument("role")
@click.option("--source-vm", required=True, help="VM whose OS disk is reused")
@click.option("--source-rg", required=True, help="Resource group of the source VM")
@click.option("--source-subscription", default=None, help="Subscription of the source VM")
@click.option("--root", default=".", show_default=True, help="Directory template paths are relative to")
@yes_option
@click.pass_context
def reuse_disk(ctx, role, source_vm, source_rg, source_subscription, root, assume_yes):
    """Replace SOURCE_VM with the ROLE VM, keeping its OS disk"""
    preflight_check(["az"])
    manifest = _load_manifest(ctx)
    _run(
        lambda: bicep.redeploy_with_disk_reuse(
            config_loader.get_vm_by_role(manifest, role),
            ctx.obj["config"],
            source_vm,
            source_rg,
            source_subscription,
            root=root,
            assume_yes=assume_yes,
        )
    )


@cli.command("rename")
@click.option("--set-hostname", is_flag=True, default=False, help="Also change the host name over SSH")
@yes_option
@click.pass_context
def rename_command(ctx, set_hostname, assume_yes):
    """Update computer names from previous_name to name in the manifest"""
    preflight_check(["az", "ssh"] if set_hostname else ["az"])
    manifest = _load_manifest(ctx)
    config = ctx.obj["config"]
    _run(
        rename.rename_vms,
        config["RESOURCE_GROUP"],
        config_loader.rename_mappings(manifest),
        config["VM_ADMIN_USER"],
        set_hostname=set_hostname,
        assume_yes=assume_yes,
    )


@cli.command("validate")
@click.option("--tf-dir", default=None, help="Terraform directory (default from manifest)")
@click.pass_context
def validate_command(ctx, tf_dir):
    """Check the deployed environment against the configuration"""
    preflight_check(["az"])
    manifest = _load_manifest(ctx)
    tf_dir = Path(tf_dir or manifest["terraform"]["working_dir"])
    expected = [vm["name"] for vm in manifest["vms"]]
    _run(validation.validate_deployment, ctx.obj["config"], expected, tf_dir)


# ---------------------------------------------------------------- terraform


@cli.group()
@click.option("--tf-dir", default=None, help="Terraform working directory (default from manifest)")
@click.pass_context
def tf(ctx, tf_dir):
    """Terraform deployment, planning and rollback"""
    manifest = _load_manifest(ctx)
    ctx.obj["tf_dir"] = Path(tf_dir or manifest["terraform"]["working_dir"])
    ctx.obj["tf_settings"] = manifest["terraform"]


@tf.command("deploy")
@yes_option
@click.pass_context
def tf_deploy(ctx, assume_yes):
    """Plan, confirm and apply the full environment"""
    _show_banner()
    preflight_check(["terraform", "az"])
    settings = ctx.obj["tf_settings"]
    _run(
        tfwrapper.deploy_all,
        ctx.obj["tf_dir"],
        settings["var_files"],
        expected_vm_count=settings["expected_vm_count"],
        assume_yes=assume_yes,
    )


@tf.command("plan")
@click.pass_context
def tf_plan(ctx):
    """Init, validate and plan without applying"""
    preflight_check(["terraform", "az"])
    _run(tfwrapper.plan_only, ctx.obj["tf_dir"], ctx.obj["tf_settings"]["var_files"])


@tf.command("rollback")
@click.pass_context
def tf_rollback(ctx):
    """Destroy everything in the Terraform state"""
    preflight_check(["terraform", "az"])
    _run(tfwrapper.rollback, ctx.obj["tf_dir"], ctx.obj["tf_settings"]["var_files"])


@tf.command("prepare")
@click.pass_context
def tf_prepare(ctx):
    """Create var files from examples and fill in generated values"""
    preflight_check(["az"])
    _run(
        prepare.prepare_deployment,
        ctx.obj["tf_dir"],
        ctx.obj["tf_settings"]["var_files"],
        ctx.obj["config"],
    )


# ---------------------------------------------------------------- history


@cli.command()
@click.option("--command", "command_name", default=None, help="Only show runs of this command")
@click.option(
    "--limit", default=10, type=click.IntRange(min=1), show_default=True, help="Number of runs to show"
)
def history(command_name, limit):
    """Show recent beeuxctl runs from the execution registry"""
    entries = logging_standard.read_registry()
    logging_standard.show_execution_history(entries, command_name, limit)
    if command_name:
        count = logging_standard.get_execution_count(entries, command_name)
        status = "succeeded" if logging_standard.check_last_success(entries, command_name) else "failed"
        if count:
            click.echo(f"\n{command_name}: {count} run(s), last run {status}")


def _command_name(argv):
    """Name used for the log file, e.g. ``provision-bulk`` or ``cleanup``."""
    words = [arg for arg in argv if not arg.startswith("-")]
    for index, word in enumerate(words):
        if word not in cli.commands:
            continue
        command = cli.commands[word]
        following = words[index + 1] if index + 1 < len(words) else None
        if isinstance(command, click.Group) and following in command.commands:
            return f"{word}-{following}"
        return word
    return None


def main():
    name = _command_name(sys.argv[1:])
    run = None
    if name and name != "history":
        run = logging_standard.setup_logging(name)
    exit_code = 1
    try:
        cli(prog_name="beeuxctl")
        exit_code = 0
    except SystemExit as e:
        exit_code = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
        raise
    finally:
        logging_standard.track_script_execution(run, exit_code)


if __name__ == "__main__":
    main()
