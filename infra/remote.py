"""Post-deployment configuration of VMs over SSH."""

import logging
import shlex
import subprocess
import time
from typing import Callable

from infra.exceptions import RemoteCommandError

logger = logging.getLogger(__name__)

SSH_OPTIONS = ["-o", "StrictHostKeyChecking=no", "-o", "ConnectTimeout=30"]
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 30
DEFAULT_BOOT_WAIT = 90
CREDENTIALS_DIR = "/etc/smbcredentials"


def run_ssh(host: str, user: str, command: str) -> subprocess.CompletedProcess:
    """Run ``command`` on ``user@host``.

    Raises:
        RemoteCommandError: If ssh or the remote command exits non-zero
    """
    cmd = ["ssh"] + SSH_OPTIONS + [f"{user}@{host}", command]
    logger.debug("ssh %s@%s: %s", user, host, command.splitlines()[0] if command else "")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RemoteCommandError(
            f"Remote command failed on {host}",
            context={"exit_code": result.returncode, "stderr": (result.stderr or "").strip()},
        )
    return result


def run_with_retries(
    action: Callable[[], object],
    retries: int = DEFAULT_RETRIES,
    delay: int = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Call ``action`` up to ``retries`` times with a fixed pause between tries.

    Returns:
        True on the first successful attempt, False once all attempts fail
    """
    for attempt in range(1, retries + 1):
        try:
            action()
            return True
        except RemoteCommandError as e:
            logger.warning(f"Attempt {attempt}/{retries} failed: {e}")
            if attempt < retries:
                sleep(delay)
    return False


def mount_options(storage_account: str) -> str:
    return (
        f"nofail,credentials={CREDENTIALS_DIR}/{storage_account}.cred,"
        "dir_mode=0777,file_mode=0666,serverino,nosharesock,actimeo=30"
    )


def file_share_mount_script(
    storage_account: str, storage_key: str, share_name: str, mount_point: str
) -> str:
    """Shell script that mounts an Azure File Share persistently via fstab."""
    creds_file = f"{CREDENTIALS_DIR}/{storage_account}.cred"
    unc_path = f"//{storage_account}.file.core.windows.net/{share_name}"
    fstab_entry = f"{unc_path} {mount_point} cifs {mount_options(storage_account)} 0 0"
    credentials = f"username={storage_account}\npassword={storage_key}\n"
    lines = [
        "set -e",
        "command -v mount.cifs >/dev/null || "
        "(sudo apt-get update -qq && sudo apt-get install -y -qq cifs-utils)",
        f"sudo mkdir -p {CREDENTIALS_DIR} {shlex.quote(mount_point)}",
        f"printf %s {shlex.quote(credentials)} | sudo tee {creds_file} >/dev/null",
        f"sudo chmod 600 {creds_file}",
        f"grep -qF {shlex.quote(unc_path)} /etc/fstab || "
        f"echo {shlex.quote(fstab_entry)} | sudo tee -a /etc/fstab >/dev/null",
        "sudo mount -a",
        f"mountpoint -q {shlex.quote(mount_point)}",
    ]
    return "\n".join(lines)


def configure_file_share(
    host: str,
    user: str,
    storage_account: str,
    storage_key: str,
    share_name: str,
    mount_point: str,
    retries: int = DEFAULT_RETRIES,
    delay: int = DEFAULT_RETRY_DELAY,
    boot_wait: int = DEFAULT_BOOT_WAIT,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Wait for the VM to boot, then mount the file share with retries."""
    if boot_wait > 0:
        logger.info(f"Waiting {boot_wait}s for {host} to finish booting")
        sleep(boot_wait)
    script = file_share_mount_script(storage_account, storage_key, share_name, mount_point)
    return run_with_retries(
        lambda: run_ssh(host, user, script), retries=retries, delay=delay, sleep=sleep
    )


def set_hostname(host: str, user: str, hostname: str) -> None:
    run_ssh(host, user, f"sudo hostnamectl set-hostname {shlex.quote(hostname)}")
