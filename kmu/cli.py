"""CLI entry point for kern-me-up."""

from __future__ import annotations

import argparse
import dataclasses
import sys
from typing import List, Optional, Tuple

from kmu.config import parse_env
from kmu.exceptions import ProvisionError
from kmu.launcher import build_invocation, render_command
from kmu.models import ProvisionConfig, VMInvocation
from kmu.pipeline import ProvisioningPipeline
from kmu.utils import get_env_bool, log

USAGE = "kmu [--show-config | --dry-run] [--no-launch] [KERNEL-DIR|-] [FS-DIR|-] [[--] QEMU-ARGS...]"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kmu",
        usage=USAGE,
        description=(
            "Build a kernel and a throwaway Alpine userland, then boot them in QEMU "
            "with the current directory shared at /mnt."
        ),
    )
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which stages would run and the QEMU command line, then exit",
    )
    parser.add_argument("--no-launch", action="store_true", help="Provision everything but do not start QEMU")
    parser.add_argument(
        "kernel_dir",
        nargs="?",
        metavar="KERNEL-DIR",
        help="Kernel source tree (default: $KMU_KERNEL_DIR or ./linux); '-' keeps the default",
    )
    parser.add_argument(
        "fs_dir",
        nargs="?",
        metavar="FS-DIR",
        help=(
            "Directory for the rootfs and init images "
            "(default: $KMU_FS_DIR or the current directory); '-' keeps the default"
        ),
    )
    parser.add_argument(
        "qemu_args",
        nargs=argparse.REMAINDER,
        metavar="QEMU-ARGS",
        help=(
            "Extra arguments passed to QEMU verbatim; a '--' directly after the "
            "directories only marks where they start"
        ),
    )
    return parser


def show_config(cfg: ProvisionConfig) -> None:
    """Print the resolved configuration."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if dataclasses.is_dataclass(value):
            print(f"  {field.name}:")
            for sub_field in dataclasses.fields(value):
                print(f"    {sub_field.name}: {getattr(value, sub_field.name)}")
        else:
            print(f"  {field.name}: {value}")


def show_plan(pipeline: ProvisioningPipeline) -> None:
    for stage, will_run in pipeline.plan():
        marker = "run " if will_run else "skip"
        print(f"  [{marker}] {stage}")
    print("  " + " ".join(render_command(build_invocation(pipeline.cfg))))


def print_startup_banner(inv: VMInvocation) -> None:
    lines: List[str] = []
    lines.append(f"  Kernel: {inv.kernel}")
    lines.append(f"  Memory: {inv.memory} | Machine: {inv.machine} | Accel: {inv.accel}")
    for drive in inv.drives:
        lines.append(f"  Drive {drive.index}: {drive.path}")
    lines.append(f"  Share:  {inv.share_dir} -> /mnt (tag '{inv.mount_tag}')")
    if inv.extra_args:
        lines.append(f"  Extra:  {' '.join(inv.extra_args)}")
    lines.append("  Quit with Ctrl-a, then x")

    max_len = max(len(line) for line in lines)
    border = "=" * (max_len + 2)
    print(border, flush=True)
    for line in lines:
        print(line, flush=True)
    print(border, flush=True)


def split_passthrough(argv: List[str]) -> Tuple[List[str], Optional[List[str]]]:
    """Split ``argv`` at the first '--' into kmu's own arguments and QEMU's."""
    if "--" not in argv:
        return argv, None
    index = argv.index("--")
    return argv[:index], argv[index + 1 :]


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    own, passthrough = split_passthrough(list(sys.argv[1:] if argv is None else argv))
    args = parser.parse_args(own)
    if passthrough is not None:
        if args.qemu_args:
            # The '--' sits among the QEMU arguments, so it belongs to them.
            args.qemu_args = args.qemu_args + ["--"] + passthrough
        else:
            args.qemu_args = passthrough
    launch_vm = not (args.no_launch or get_env_bool("KMU_NO_LAUNCH", False))

    try:
        cfg = parse_env(args.kernel_dir, args.fs_dir, args.qemu_args)
    except ProvisionError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    pipeline = ProvisioningPipeline(cfg)
    if args.dry_run:
        log("INFO", "=== Dry run (nothing will be changed) ===")
        show_plan(pipeline)
        return 0

    try:
        return pipeline.run(launch_vm=launch_vm, on_launch=print_startup_banner)
    except ProvisionError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug in kern-me-up.")
        import traceback

        traceback.print_exc()
        return 1
