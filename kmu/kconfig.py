"""Kernel .config inspection: required-option checks and first-time overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from kmu.constants import CONFIG_APPENDED_LINES, CONFIG_OVERRIDES, REQUIRED_OPTION_GROUPS
from kmu.exceptions import MissingOptionsError, ProvisionError
from kmu.models import RequirementGroup
from kmu.utils import log


def default_groups() -> List[RequirementGroup]:
    return [RequirementGroup(*group) for group in REQUIRED_OPTION_GROUPS]


def _read_lines(config_path: Path) -> List[str]:
    try:
        return config_path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise ProvisionError(f"Cannot read kernel config {config_path}: {exc}")


def missing_options(config_path: Path, options: Iterable[str], lines: Optional[Sequence[str]] = None) -> List[str]:
    """Return every option in ``options`` that is not set to ``y``, in order."""
    if lines is None:
        lines = _read_lines(config_path)
    enabled = {line.strip() for line in lines}
    return [name for name in options if f"CONFIG_{name}=y" not in enabled]


def check_requirements(config_path: Path, groups: Optional[Sequence[RequirementGroup]] = None) -> None:
    """Check every requirement group, then fail once with everything that is missing.

    Each missing option is reported on its own line as it is found, so a
    single run shows the full list rather than stopping at the first group
    that fails.
    """
    if groups is None:
        groups = default_groups()
    lines = _read_lines(config_path)
    missing: List[str] = []
    for group in groups:
        absent = missing_options(config_path, group.options, lines=lines)
        if absent:
            log("DEBUG", f"Requirement group '{group.name}' ({group.reason}) is incomplete")
        for name in absent:
            log("ERROR", f"Missing .config option CONFIG_{name}")
            if name not in missing:
                missing.append(name)
    if missing:
        raise MissingOptionsError(missing)


def apply_overrides(
    config_path: Path,
    overrides: Sequence[Tuple[str, str]] = CONFIG_OVERRIDES,
    appended: Sequence[str] = CONFIG_APPENDED_LINES,
) -> None:
    """Rewrite whole lines of a fresh defconfig, then append extra lines."""
    replacements = dict(overrides)
    lines = [replacements.get(line, line) for line in _read_lines(config_path)]
    lines.extend(appended)
    config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
