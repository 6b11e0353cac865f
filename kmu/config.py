"""Configuration loading and environment variable parsing for kern-me-up."""

from __future__ import annotations

import getpass
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from kmu.constants import (
    DEFAULT_FS_DIR,
    DEFAULT_KERNEL_DIR,
    DEFAULT_MEMORY,
    KERNEL_CLONE_URL,
    ROOTFS_SHA256,
    ROOTFS_TARBALL_NAME,
    ROOTFS_URL,
    SETTINGS_FILE_NAME,
    USE_DEFAULT_ARG,
)
from kmu.exceptions import ProvisionError
from kmu.models import ProvisionConfig, RemoteArtifact
from kmu.utils import get_env, log, parse_int_env, validate_memory_size

SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")

SETTINGS_KEYS = {"kernel_clone_url", "rootfs_url", "rootfs_sha256", "memory", "share_dir", "hostname"}


def load_settings(path: Path) -> Dict[str, Any]:
    """Read the optional YAML settings file; unknown keys are rejected."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ProvisionError(f"Cannot read settings file {path}: {exc}")
    except yaml.YAMLError as exc:
        raise ProvisionError(f"Settings file {path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProvisionError(f"Settings file {path} must contain a YAML mapping, got {type(data).__name__}")
    unknown = sorted(str(key) for key in data if key not in SETTINGS_KEYS)
    if unknown:
        supported = ", ".join(sorted(SETTINGS_KEYS))
        raise ProvisionError(f"Unknown key(s) in {path}: {', '.join(unknown)}. Supported: {supported}")
    for key, value in data.items():
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            raise ProvisionError(f"Setting '{key}' in {path} must be a string or number")
    return {key: str(value) for key, value in data.items()}


def _resolve_dir(arg: Optional[str], env_name: str, default: Path) -> Path:
    if arg is not None and arg != USE_DEFAULT_ARG:
        return Path(arg).expanduser().resolve()
    env_value = (get_env(env_name) or "").strip()
    if env_value:
        return Path(env_value).expanduser().resolve()
    return Path.cwd() / default


def default_hostname() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "kmu"
    return f"{user}-vm"


def _settings_path(fs_dir: Path) -> Optional[Path]:
    explicit = (get_env("KMU_CONFIG") or "").strip()
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ProvisionError(f"KMU_CONFIG points to a missing file: {path}")
        return path
    candidate = fs_dir / SETTINGS_FILE_NAME
    return candidate if candidate.is_file() else None


def parse_env(
    kernel_arg: Optional[str] = None,
    fs_arg: Optional[str] = None,
    qemu_args: Optional[Sequence[str]] = None,
) -> ProvisionConfig:
    """Build the run configuration once from arguments, environment and settings file."""
    kernel_dir = _resolve_dir(kernel_arg, "KMU_KERNEL_DIR", DEFAULT_KERNEL_DIR)
    fs_dir = _resolve_dir(fs_arg, "KMU_FS_DIR", DEFAULT_FS_DIR)

    settings_path = _settings_path(fs_dir)
    settings: Dict[str, Any] = {}
    if settings_path is not None:
        log("DEBUG", f"Loading settings from {settings_path}")
        settings = load_settings(settings_path)

    rootfs_sha256 = settings.get("rootfs_sha256", ROOTFS_SHA256)
    if not SHA256_RE.match(rootfs_sha256):
        raise ProvisionError(f"rootfs_sha256 must be 64 hex characters (got '{rootfs_sha256}')")

    memory = (get_env("KMU_MEMORY") or "").strip() or settings.get("memory", DEFAULT_MEMORY)
    validate_memory_size(memory, "memory size")

    share_raw = (get_env("KMU_SHARE_DIR") or "").strip() or settings.get("share_dir")
    share_dir = Path(share_raw).expanduser().resolve() if share_raw else Path.cwd()
    if not share_dir.is_dir():
        raise ProvisionError(f"Host share directory does not exist: {share_dir}")

    hostname = settings.get("hostname") or default_hostname()
    cpus = parse_int_env("KMU_CPUS", str(os.cpu_count() or 1), min_val=1, max_val=4096)

    extra: List[str] = list(qemu_args or [])
    return ProvisionConfig(
        kernel_dir=kernel_dir,
        fs_dir=fs_dir,
        share_dir=share_dir,
        kernel_clone_url=settings.get("kernel_clone_url", KERNEL_CLONE_URL),
        rootfs=RemoteArtifact(
            url=settings.get("rootfs_url", ROOTFS_URL),
            sha256=rootfs_sha256.lower(),
            path=fs_dir / ROOTFS_TARBALL_NAME,
        ),
        memory=memory,
        hostname=hostname,
        cpus=cpus,
        qemu_args=extra,
        settings_path=settings_path,
    )
