"""Assembly of the small init image that boots stage 1."""

from __future__ import annotations

import posixpath
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Sequence

from kmu.constants import INITFS_BINARIES, INITFS_DIRECTORIES, STAGE1_PATH, STAGE2_PATH
from kmu.exceptions import ProvisionError
from kmu.images import build_image_from_tar
from kmu.models import BootScripts
from kmu.utils import ensure_directory, log


class InitImageBuilder:
    def __init__(
        self,
        rootfs_tarball: Path,
        scripts: BootScripts,
        binaries: Sequence[str] = INITFS_BINARIES,
        directories: Sequence[str] = INITFS_DIRECTORIES,
    ) -> None:
        self.rootfs_tarball = rootfs_tarball
        self.scripts = scripts
        self.binaries = tuple(binaries)
        self.directories = tuple(directories)

    def build(self, tar_path: Path, image: Path) -> None:
        """Stage the tree, write ``tar_path`` and pack it into ``image``.

        The staging directory is removed whether or not packing succeeds. A
        leftover ``tar_path`` from an earlier run is deleted first, and the
        tar is removed again once the image exists.
        """
        if tar_path.exists():
            log("INFO", f"Deleting the old {tar_path.name}...")
            tar_path.unlink()

        log("INFO", "Creating files to add to the initial filesystem...")
        ensure_directory(tar_path.parent)
        staging = Path(tempfile.mkdtemp(prefix="kmu-initfs-"))
        try:
            self.stage(staging)
            self.write_tar(staging, tar_path)
        except BaseException:
            tar_path.unlink(missing_ok=True)
            raise
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        log("INFO", "Creating initial filesystem...")
        build_image_from_tar(tar_path, image)
        tar_path.unlink(missing_ok=True)
        log("SUCCESS", f"Initial filesystem written to {image}")

    def stage(self, root: Path) -> None:
        for directory in self.directories:
            ensure_directory(root / directory)
        self._write_script(root, STAGE1_PATH, self.scripts.stage1, 0o755)
        # stage 2 is copied into the new root by `install`, which sets its mode.
        self._write_script(root, STAGE2_PATH, self.scripts.stage2, 0o644)
        self._extract_binaries(root)

    @staticmethod
    def _write_script(root: Path, guest_path: str, content: str, mode: int) -> None:
        target = root / guest_path.lstrip("/")
        ensure_directory(target.parent)
        target.write_text(content, encoding="utf-8")
        target.chmod(mode)

    def _extract_binaries(self, root: Path) -> None:
        try:
            with tarfile.open(self.rootfs_tarball, "r:gz") as archive:
                by_name = {posixpath.normpath(member.name): member for member in archive.getmembers()}
                members = []
                for name in self.binaries:
                    member = by_name.get(posixpath.normpath(name))
                    if member is None:
                        raise ProvisionError(f"{name} not found in {self.rootfs_tarball}")
                    members.append(member)
                archive.extractall(root, members=members, filter="tar")
        except (OSError, tarfile.TarError) as exc:
            raise ProvisionError(f"Cannot extract binaries from {self.rootfs_tarball}: {exc}")

    @staticmethod
    def write_tar(root: Path, tar_path: Path) -> None:
        with tarfile.open(tar_path, "w") as archive:
            for entry in sorted(root.iterdir()):
                archive.add(entry, arcname=f"./{entry.name}")
