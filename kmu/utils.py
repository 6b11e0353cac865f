"""Utility functions for kern-me-up."""

from __future__ import annotations

import hashlib
import os
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from kmu.constants import (
    _LOG_VERBOSE,
    BUILD_JOBS_DENOMINATOR,
    BUILD_JOBS_NUMERATOR,
    MEMORY_SIZE_RE,
    TRUTHY,
)
from kmu.exceptions import ProvisionError


def log(level: str, message: str) -> None:
    """Print a levelled message, colouring the level tag when stdout is a TTY."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[1;31m",
        "SUCCESS": "\033[1;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "") if _stdout_is_tty() else ""
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def _stdout_is_tty() -> bool:
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ProvisionError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ProvisionError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ProvisionError(f"{name} must be <= {max_val} (got {value})")
    return value


def validate_memory_size(raw: str, source: str = "memory") -> str:
    if not MEMORY_SIZE_RE.match(raw):
        raise ProvisionError(
            f"Invalid {source} '{raw}'. Use a number with optional suffix: M, G (e.g. '512M')"
        )
    return raw


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def build_parallelism(cpus: Optional[int] = None) -> Tuple[int, int]:
    """Return (jobs, load limit) for make: 1.5x the CPU count, load capped at the CPU count."""
    if cpus is None:
        cpus = os.cpu_count() or 1
    cpus = max(cpus, 1)
    jobs = max(cpus * BUILD_JOBS_NUMERATOR // BUILD_JOBS_DENOMINATOR, 1)
    return jobs, cpus


def download_file(url: str, destination: Path, label: str = "Downloading") -> None:
    """Download a file with a progress bar using Python urllib."""
    log("INFO", f"{label}: {url}")
    req = Request(url, headers={"User-Agent": "kern-me-up/1.0"})
    try:
        response = urlopen(req, timeout=60)
    except HTTPError as exc:
        raise ProvisionError(f"HTTP error downloading {url}: {exc.code} {exc.reason}")
    except URLError as exc:
        raise ProvisionError(f"Failed to download {url}: {exc.reason}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()
    show_progress = _stdout_is_tty()

    with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent) as tmp:
        tmp_path = Path(tmp.name)
        try:
            chunk_size = 1024 * 256  # 256 KiB
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                tmp.write(chunk)
                downloaded += len(chunk)
                if not show_progress:
                    continue

                elapsed = time.time() - start_time
                speed = downloaded / elapsed if elapsed > 0 else 0
                downloaded_mb = downloaded / (1024 * 1024)
                if total_bytes:
                    total_mb = total_bytes / (1024 * 1024)
                    pct = downloaded * 100 / total_bytes
                    bar_len = 30
                    filled = int(bar_len * downloaded / total_bytes)
                    bar = "#" * filled + "-" * (bar_len - filled)
                    print(
                        f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
                else:
                    print(
                        f"\r  {downloaded_mb:.1f} MiB downloaded "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
            if show_progress:
                print(flush=True)  # newline after progress
            tmp.flush()
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()
    tmp_path.replace(destination)
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging; a failing or missing tool becomes a ProvisionError."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, check=check, text=True, **kwargs)
    except FileNotFoundError:
        raise ProvisionError(f"{cmd[0]} not found; is it installed and on PATH?")
    except subprocess.CalledProcessError as exc:
        raise ProvisionError(f"{cmd[0]} failed with exit status {exc.returncode}: {' '.join(cmd)}")


def run_with_stdin(cmd: List[str], source: BinaryIO) -> None:
    """Run command feeding it ``source`` on stdin, like ``producer | cmd``."""
    log("DEBUG", f"Running: {' '.join(cmd)} < stream")
    try:
        proc = subprocess.Popen(cmd, stdin=subprocess.PIPE)
    except FileNotFoundError:
        raise ProvisionError(f"{cmd[0]} not found; is it installed and on PATH?")
    assert proc.stdin is not None
    try:
        shutil.copyfileobj(source, proc.stdin)
    except BrokenPipeError:
        pass
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        try:
            proc.stdin.close()
        except BrokenPipeError:
            pass
    returncode = proc.wait()
    if returncode != 0:
        raise ProvisionError(f"{cmd[0]} failed with exit status {returncode}: {' '.join(cmd)}")
