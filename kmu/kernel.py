"""Kernel source tree handling: clone, first-time configuration and build."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from kmu.constants import KERNEL_BUILD_TARGET, KERNEL_CONFIG_NAME, KERNEL_IMAGE_RELPATH
from kmu.kconfig import apply_overrides
from kmu.utils import build_parallelism, log, run


class KernelWorkspace:
    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def config(self) -> Path:
        return self.path / KERNEL_CONFIG_NAME

    @property
    def image(self) -> Path:
        return self.path / KERNEL_IMAGE_RELPATH

    def _make(self, *targets: str) -> List[str]:
        return ["make", "-C", str(self.path), *targets]

    def clone(self, url: str) -> None:
        log("INFO", f"Cloning {url}...")
        run(["git", "clone", url, str(self.path)])

    def configure(self) -> None:
        """Create .config from defconfig plus our overrides.

        Only called when no .config exists; an existing one is never rewritten.
        """
        log("INFO", "Configuring kernel with defconfig...")
        run(self._make("defconfig"))
        log("INFO", "Setting config options we require...")
        apply_overrides(self.config)
        log("INFO", "Configuring kernel with olddefconfig...")
        run(self._make("olddefconfig"))

    def build_command(self, cpus: Optional[int] = None) -> List[str]:
        jobs, load = build_parallelism(cpus)
        return self._make(KERNEL_BUILD_TARGET, "-j", str(jobs), "-l", str(load))

    def build(self, cpus: Optional[int] = None) -> None:
        if self.image.exists():
            log("INFO", "Rebuilding kernel...")
        else:
            log("INFO", "Building kernel...")
        run(self.build_command(cpus))
