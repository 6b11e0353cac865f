"""Decide whether an expensive pipeline step can be skipped."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from kmu.utils import log, sha256_file


class ArtifactCache:
    """Pure decision interface over artifact presence and content hashes.

    ``exists`` and ``digest`` default to the real filesystem probes but can be
    swapped for fakes; the cache never creates, deletes or fetches anything.
    """

    def __init__(
        self,
        exists: Optional[Callable[[Path], bool]] = None,
        digest: Optional[Callable[[Path], str]] = None,
    ) -> None:
        self._exists = exists or (lambda path: path.exists())
        self._digest = digest or sha256_file

    def is_present(self, path: Path) -> bool:
        return self._exists(path)

    def is_valid(self, path: Path, expected_sha256: str) -> bool:
        if not self._exists(path):
            return False
        actual = self._digest(path)
        if actual.lower() != expected_sha256.lower():
            log("WARN", f"Hash mismatch for {path} (got {actual}); it will be fetched again")
            return False
        return True
