"""Global constants and default paths for kern-me-up."""

from __future__ import annotations

import os
import re
from pathlib import Path

KERNEL_CLONE_URL = "https://git.kernel.org/pub/scm/linux/kernel/git/torvalds/linux.git"
ROOTFS_URL = (
    "https://dl-cdn.alpinelinux.org/alpine/v3.19/releases/x86_64/alpine-minirootfs-3.19.1-x86_64.tar.gz"
)
ROOTFS_SHA256 = "185123ceb6e7d08f2449fff5543db206ffb79decd814608d399ad447e08fa29e"

# Relative to the working directory at startup.
DEFAULT_KERNEL_DIR = Path("linux")
DEFAULT_FS_DIR = Path(".")
SETTINGS_FILE_NAME = "kmu.yaml"

# Placeholder accepted in place of a positional directory argument.
USE_DEFAULT_ARG = "-"

KERNEL_CONFIG_NAME = ".config"
KERNEL_IMAGE_RELPATH = Path("arch/x86_64/boot/bzImage")
KERNEL_BUILD_TARGET = "bzImage"

ROOTFS_TARBALL_NAME = "rootfs.tar.gz"
ROOTFS_IMAGE_NAME = "rootfs.squashfs"
INITFS_TAR_NAME = "initfs.tar"
INITFS_IMAGE_NAME = "initfs.squashfs"

TRUTHY = {"1", "true", "yes", "on"}
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

# Parallelism handed to make: compile jobs = cpus * 3 / 2, load cap = cpus.
BUILD_JOBS_NUMERATOR = 3
BUILD_JOBS_DENOMINATOR = 2

# (pattern, replacement) pairs applied line-by-line to a fresh defconfig.
CONFIG_OVERRIDES = (
    ("# CONFIG_9P_FS_POSIX_ACL is not set", "CONFIG_9P_FS_POSIX_ACL=y"),
    ("CONFIG_DEBUG_INFO_NONE=y", "# CONFIG_DEBUG_INFO_NONE is not set"),
    ("# CONFIG_DEBUG_INFO_DWARF5 is not set", "CONFIG_DEBUG_INFO_DWARF5=y"),
    ("# CONFIG_OVERLAY_FS is not set", "CONFIG_OVERLAY_FS=y"),
    ("# CONFIG_SQUASHFS is not set", "CONFIG_SQUASHFS=y"),
)
CONFIG_APPENDED_LINES = ("CONFIG_GDB_SCRIPTS=y",)

REQUIRED_OPTION_GROUPS = (
    (
        "base",
        "really basic things needed to boot to a shell",
        (
            "64BIT",
            "BINFMT_ELF",
            "BINFMT_SCRIPT",
            "DEVTMPFS_MOUNT",
            "MULTIUSER",
            "PRINTK",
            "PROC_FS",
            "SERIAL_8250_CONSOLE",
            "SYSFS",
            "TMPFS_POSIX_ACL",
            "VIRTIO_BLK",
        ),
    ),
    (
        "9p",
        "host directory passthrough (https://wiki.qemu.org/Documentation/9psetup#Preparation)",
        ("NET_9P", "NET_9P_VIRTIO", "9P_FS", "9P_FS_POSIX_ACL", "PCI", "VIRTIO_PCI"),
    ),
    (
        "rootfs",
        "overlay of the read-only squashfs root",
        ("OVERLAY_FS", "SQUASHFS"),
    ),
    (
        "stage2",
        "guest networking and login in stage 2",
        ("E1000E", "FILE_LOCKING", "PACKET"),
    ),
    (
        "debug",
        "debugging niceties for gdb",
        ("DEBUG_INFO_DWARF5", "GDB_SCRIPTS"),
    ),
)

# Members copied out of the rootfs tarball into the init image.
INITFS_BINARIES = (
    "./bin/busybox",
    "./bin/mkdir",
    "./bin/mount",
    "./bin/sh",
    "./usr/bin/install",
    "./usr/sbin/chroot",
    "./lib/ld-musl-x86_64.so.1",
)
INITFS_DIRECTORIES = (
    "bin",
    "dev",
    "init",
    "mnt/lower",
    "mnt/root",
    "mnt/upper",
    "usr/bin",
    "usr/sbin",
)

# Guest-side layout shared by the boot scripts and the launcher.
STAGE1_PATH = "/init/stage1"
STAGE2_PATH = "/init/stage2"
INIT_ROOT_DEVICE = "/dev/vda"
ROOTFS_DEVICE = "/dev/vdb"
LOWER_MOUNT = "/mnt/lower"
UPPER_MOUNT = "/mnt/upper"
NEW_ROOT = "/mnt/root"
HOST_MOUNT_TAG = "host"
HOST_MOUNT_SUBPATH = "mnt"
NINEP_OPTIONS = "trans=virtio,version=9p2000.L,msize=128M"
SERIAL_TTY = "/dev/ttyS0"
GUEST_INTERFACE = "eth0"

QEMU_BINARY = "qemu-system-x86_64"
QEMU_MACHINE = "q35"
QEMU_ACCEL = "kvm"
QEMU_CPU = "host"
DEFAULT_MEMORY = "512M"
MEMORY_SIZE_RE = re.compile(r"^\d+[MGmg]?$")
KERNEL_CMDLINE = ("console=ttyS0", f"root={INIT_ROOT_DEVICE}", f"init={STAGE1_PATH}", "nokaslr")
