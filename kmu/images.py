"""Packing tar streams into squashfs images with sqfstar."""

from __future__ import annotations

import gzip
import zlib
from pathlib import Path
from typing import BinaryIO

from kmu.exceptions import ProvisionError
from kmu.utils import log, run_with_stdin

SQFSTAR = "sqfstar"


def squash_tar_stream(stream: BinaryIO, image: Path) -> None:
    """Pack an uncompressed tar stream into ``image``; a failed pack leaves no image behind."""
    try:
        run_with_stdin([SQFSTAR, str(image)], stream)
    except BaseException:
        image.unlink(missing_ok=True)
        raise


def build_rootfs_image(tarball: Path, image: Path) -> None:
    """Repack a gzipped rootfs tarball straight into a squashfs image, without extracting it."""
    log("INFO", "Creating root filesystem...")
    try:
        with gzip.open(tarball, "rb") as stream:
            squash_tar_stream(stream, image)
    except (OSError, EOFError, zlib.error) as exc:
        image.unlink(missing_ok=True)
        raise ProvisionError(f"Cannot decompress {tarball}: {exc}")
    log("SUCCESS", f"Root filesystem written to {image}")


def build_image_from_tar(tar_path: Path, image: Path) -> None:
    with open(tar_path, "rb") as stream:
        squash_tar_stream(stream, image)
