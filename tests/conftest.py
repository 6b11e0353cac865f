"""Shared test fixtures."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from kmu.constants import INITFS_BINARIES, REQUIRED_OPTION_GROUPS
from kmu.models import ProvisionConfig, RemoteArtifact

# Alpine ships most of these as symlinks to busybox.
_SYMLINKED = {"./bin/mkdir", "./bin/mount", "./bin/sh", "./usr/bin/install", "./usr/sbin/chroot"}


def _all_required_options():
    return [name for _, _, options in REQUIRED_OPTION_GROUPS for name in options]


def write_kernel_config(path: Path, disabled=()) -> Path:
    """Write a .config enabling every required option except ``disabled``."""
    lines = ["#", "# Automatically generated file; DO NOT EDIT.", "#"]
    for name in _all_required_options():
        if name in disabled:
            lines.append(f"# CONFIG_{name} is not set")
        else:
            lines.append(f"CONFIG_{name}=y")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


def make_rootfs_tarball(path: Path, skip=()) -> Path:
    """Create a tiny gzipped stand-in for the Alpine minirootfs."""
    with tarfile.open(path, "w:gz") as archive:
        for directory in ("./bin", "./lib", "./usr", "./usr/bin", "./usr/sbin", "./etc"):
            info = tarfile.TarInfo(directory)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        members = list(INITFS_BINARIES) + ["./etc/hostname"]
        for name in members:
            if name in skip:
                continue
            info = tarfile.TarInfo(name)
            if name in _SYMLINKED:
                info.type = tarfile.SYMTYPE
                info.linkname = "/bin/busybox"
                archive.addfile(info)
            else:
                payload = f"contents of {name}\n".encode()
                info.size = len(payload)
                info.mode = 0o755
                archive.addfile(info, io.BytesIO(payload))
    return path


@pytest.fixture
def kmu_config(tmp_path) -> ProvisionConfig:
    """Return a ProvisionConfig rooted in tmp_path."""
    kernel_dir = tmp_path / "linux"
    fs_dir = tmp_path / "fs"
    share_dir = tmp_path / "share"
    share_dir.mkdir()
    return ProvisionConfig(
        kernel_dir=kernel_dir,
        fs_dir=fs_dir,
        share_dir=share_dir,
        kernel_clone_url="https://example.com/linux.git",
        rootfs=RemoteArtifact(
            url="https://example.com/rootfs.tar.gz",
            sha256="0" * 64,
            path=fs_dir / "rootfs.tar.gz",
        ),
        memory="512M",
        hostname="tester-vm",
        cpus=4,
        qemu_args=[],
    )


# All environment variables that parse_env() reads, used to ensure a clean slate.
_PARSE_ENV_VARS = [
    "KMU_KERNEL_DIR",
    "KMU_FS_DIR",
    "KMU_CONFIG",
    "KMU_MEMORY",
    "KMU_SHARE_DIR",
    "KMU_CPUS",
    "KMU_NO_LAUNCH",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Clear every variable parse_env() reads."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set

