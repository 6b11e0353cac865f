"""Custom exceptions for kern-me-up."""

from __future__ import annotations

from typing import Sequence


class ProvisionError(RuntimeError):
    """Raised on unrecoverable configuration or tool errors."""


class MissingOptionsError(ProvisionError):
    """Raised once every requirement group has been checked and some options are off."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        names = ", ".join(f"CONFIG_{name}" for name in self.missing)
        super().__init__(f"{len(self.missing)} required .config option(s) missing: {names}")
