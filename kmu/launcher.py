"""Hypervisor invocation for the provisioned VM."""

from __future__ import annotations

import signal
import subprocess
from typing import List

from kmu.constants import (
    HOST_MOUNT_TAG,
    KERNEL_CMDLINE,
    QEMU_ACCEL,
    QEMU_BINARY,
    QEMU_CPU,
    QEMU_MACHINE,
)
from kmu.exceptions import ProvisionError
from kmu.models import BlockDevice, ProvisionConfig, VMInvocation
from kmu.utils import kvm_available, log


def build_invocation(cfg: ProvisionConfig) -> VMInvocation:
    return VMInvocation(
        binary=QEMU_BINARY,
        kernel=cfg.kernel_image,
        cmdline=" ".join(KERNEL_CMDLINE),
        machine=QEMU_MACHINE,
        memory=cfg.memory,
        accel=QEMU_ACCEL,
        cpu=QEMU_CPU,
        # The init image must be index 0 so it appears as /dev/vda (root=).
        drives=[BlockDevice(cfg.initfs_image, 0), BlockDevice(cfg.rootfs_image, 1)],
        share_dir=cfg.share_dir,
        mount_tag=HOST_MOUNT_TAG,
        extra_args=list(cfg.qemu_args),
    )


def render_command(inv: VMInvocation) -> List[str]:
    cmd = [
        inv.binary,
        "-kernel",
        str(inv.kernel),
        "-append",
        inv.cmdline,
        "-M",
        inv.machine,
        "-m",
        inv.memory,
        "-accel",
        inv.accel,
        "-cpu",
        inv.cpu,
    ]
    for drive in sorted(inv.drives, key=lambda d: d.index):
        cmd.extend(["-drive", f"file={drive.path},if=virtio,index={drive.index},format=raw,read-only=on"])
    cmd.append("-nographic")
    cmd.extend(
        [
            "-virtfs",
            f"local,path={inv.share_dir},mount_tag={inv.mount_tag},security_model=mapped,multidevs=remap",
        ]
    )
    # Caller-supplied arguments go last, unvalidated.
    cmd.extend(inv.extra_args)
    return cmd


def exit_status(returncode: int) -> int:
    """Map a Popen return code to a shell-style status (128 + N when killed by signal N)."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def launch(inv: VMInvocation) -> int:
    """Run the hypervisor in the foreground and return its exit status."""
    if not kvm_available():
        log("WARN", "/dev/kvm is not available; the hypervisor will refuse -accel kvm")
    cmd = render_command(inv)
    log("INFO", "Running QEMU...")
    log("DEBUG", f"Running: {' '.join(cmd)}")
    try:
        proc = subprocess.Popen(cmd)
    except FileNotFoundError:
        raise ProvisionError(f"{inv.binary} not found; is QEMU installed?")

    def _terminate(signum, frame):
        proc.terminate()

    prev_sigterm = signal.signal(signal.SIGTERM, _terminate)
    try:
        return exit_status(proc.wait())
    except KeyboardInterrupt:
        proc.send_signal(signal.SIGINT)
        return exit_status(proc.wait())
    finally:
        signal.signal(signal.SIGTERM, prev_sigterm)
