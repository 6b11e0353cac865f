"""Data models for kern-me-up."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from kmu.constants import (
    INITFS_IMAGE_NAME,
    INITFS_TAR_NAME,
    KERNEL_CONFIG_NAME,
    KERNEL_IMAGE_RELPATH,
    ROOTFS_IMAGE_NAME,
)


class RequirementGroup(NamedTuple):
    name: str
    reason: str
    options: Tuple[str, ...]


class MountStep(NamedTuple):
    """One line of the stage-1 script plus the mount point it depends on."""

    kind: str  # "mount", "mkdir", "move", "install", "exec"
    command: str
    target: str
    requires: Tuple[str, ...] = ()


class BlockDevice(NamedTuple):
    path: Path
    index: int


@dataclass
class RemoteArtifact:
    url: str
    sha256: str
    path: Path


@dataclass
class BootScripts:
    stage1: str
    stage2: str


@dataclass
class ProvisionConfig:
    kernel_dir: Path
    fs_dir: Path
    share_dir: Path
    kernel_clone_url: str
    rootfs: RemoteArtifact
    memory: str
    hostname: str
    cpus: int = 1
    qemu_args: List[str] = field(default_factory=list)
    settings_path: Optional[Path] = None

    @property
    def kernel_config(self) -> Path:
        return self.kernel_dir / KERNEL_CONFIG_NAME

    @property
    def kernel_image(self) -> Path:
        return self.kernel_dir / KERNEL_IMAGE_RELPATH

    @property
    def rootfs_image(self) -> Path:
        return self.fs_dir / ROOTFS_IMAGE_NAME

    @property
    def initfs_tar(self) -> Path:
        return self.fs_dir / INITFS_TAR_NAME

    @property
    def initfs_image(self) -> Path:
        return self.fs_dir / INITFS_IMAGE_NAME


@dataclass
class VMInvocation:
    binary: str
    kernel: Path
    cmdline: str
    machine: str
    memory: str
    accel: str
    cpu: str
    drives: List[BlockDevice]
    share_dir: Path
    mount_tag: str
    extra_args: List[str] = field(default_factory=list)
