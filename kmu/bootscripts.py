"""Generation of the two guest boot-stage scripts.

Stage 1 runs as init inside the init image. It assembles the real root out of
the read-only rootfs image and a tmpfs scratch layer, attaches the host share,
and chroots into stage 2. Stage 2 holds everything guest-specific: hostname,
networking, the root password and the login prompt.
"""

from __future__ import annotations

import enum
import posixpath
import shlex
import textwrap
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from kmu.constants import (
    GUEST_INTERFACE,
    HOST_MOUNT_SUBPATH,
    HOST_MOUNT_TAG,
    LOWER_MOUNT,
    NEW_ROOT,
    NINEP_OPTIONS,
    ROOTFS_DEVICE,
    SERIAL_TTY,
    STAGE2_PATH,
    UPPER_MOUNT,
)
from kmu.exceptions import ProvisionError
from kmu.models import BootScripts, MountStep


@dataclass
class Stage1Layout:
    rootfs_device: str = ROOTFS_DEVICE
    lower: str = LOWER_MOUNT
    upper: str = UPPER_MOUNT
    new_root: str = NEW_ROOT
    mount_tag: str = HOST_MOUNT_TAG
    host_subpath: str = HOST_MOUNT_SUBPATH
    ninep_options: str = NINEP_OPTIONS
    stage2_source: str = STAGE2_PATH

    @property
    def upper_files(self) -> str:
        return posixpath.join(self.upper, "files")

    @property
    def upper_work(self) -> str:
        return posixpath.join(self.upper, "work")

    def in_root(self, path: str) -> str:
        return posixpath.join(self.new_root, path.lstrip("/"))


def stage1_steps(layout: Stage1Layout) -> List[MountStep]:
    """Return the ordered stage-1 steps; each names the mount points it needs."""
    root = layout.new_root
    host = layout.in_root(layout.host_subpath)
    new_dev = layout.in_root("dev")
    new_proc = layout.in_root("proc")
    new_sys = layout.in_root("sys")
    new_init = layout.in_root("init")
    return [
        MountStep("mount", f"mount -t squashfs -o ro {layout.rootfs_device} {layout.lower}", layout.lower),
        MountStep("mount", f"mount -t tmpfs    none     {layout.upper}", layout.upper),
        MountStep(
            "mkdir",
            f"mkdir {layout.upper_files} {layout.upper_work}",
            layout.upper_files,
            requires=(layout.upper,),
        ),
        MountStep(
            "mount",
            f"mount -t overlay overlay {root} "
            f"-o lowerdir={layout.lower},upperdir={layout.upper_files},workdir={layout.upper_work}",
            root,
            requires=(layout.lower, layout.upper_files),
        ),
        MountStep(
            "mount",
            f"mount -t 9p       {layout.mount_tag} {host} -o {layout.ninep_options}",
            host,
            requires=(root,),
        ),
        MountStep("move", f"mount --move      /dev {new_dev}", new_dev, requires=(root,)),
        MountStep("mount", f"mount -t proc     none {new_proc}", new_proc, requires=(root,)),
        MountStep("mount", f"mount -t sysfs    none {new_sys}", new_sys, requires=(root,)),
        MountStep("install", f"install {layout.stage2_source} {new_init}", new_init, requires=(root,)),
        MountStep(
            "exec",
            f"exec chroot {root} /init",
            "/",
            requires=(root, host, new_dev, new_proc, new_sys, new_init),
        ),
    ]


def validate_stage1_order(steps: Sequence[MountStep]) -> None:
    """Raise if any step runs before a step that provides one of its requirements."""
    provided = set()
    for index, step in enumerate(steps):
        for needed in step.requires:
            if needed not in provided:
                raise ProvisionError(f"Stage 1 step {index} ({step.command!r}) runs before {needed} is ready")
        provided.add(step.target)
    if not steps or steps[-1].kind != "exec":
        raise ProvisionError("Stage 1 must end by exec-ing into the new root")


def render_stage1(layout: Stage1Layout) -> str:
    steps = stage1_steps(layout)
    validate_stage1_order(steps)
    lines = ["#!/bin/sh", "set -eux", ""]
    lines.extend(step.command for step in steps)
    return "\n".join(lines) + "\n"


class RespawnState(enum.Enum):
    SPAWN = "spawn"
    WAIT = "wait"
    RESPAWN = "respawn"


class RespawnPolicy:
    """Supervised restart of a console login: spawn, wait for exit, respawn.

    The machine has no terminal state; the VM is torn down from the host by
    quitting the hypervisor.
    """

    _TRANSITIONS = {
        RespawnState.SPAWN: RespawnState.WAIT,
        RespawnState.WAIT: RespawnState.RESPAWN,
        RespawnState.RESPAWN: RespawnState.WAIT,
    }

    def __init__(self, command: Sequence[str]) -> None:
        self.command: Tuple[str, ...] = tuple(command)

    @staticmethod
    def next_state(state: RespawnState) -> RespawnState:
        return RespawnPolicy._TRANSITIONS[state]

    @staticmethod
    def is_terminal(state: RespawnState) -> bool:
        return state not in RespawnPolicy._TRANSITIONS

    def states(self) -> Iterator[RespawnState]:
        state = RespawnState.SPAWN
        while True:
            yield state
            state = self.next_state(state)

    def sessions(self, spawn: Callable[[Tuple[str, ...]], int]) -> Iterator[int]:
        """Drive ``spawn`` through the state machine, yielding each session's exit status."""
        status = 0
        for state in self.states():
            if state is RespawnState.WAIT:
                yield status
            else:
                status = spawn(self.command)

    def render(self) -> List[str]:
        command = " ".join(shlex.quote(arg) for arg in self.command)
        return ["while true; do", f"\t{command}", "done"]


def login_policy(tty: str = SERIAL_TTY) -> RespawnPolicy:
    return RespawnPolicy(("getty", "0", tty))


_STAGE2_BANNER = r'printf "Booted to \e[1;31ms\e[32mt\e[33ma\e[34mg\e[35me\e[36m2\e[0m!\n"'

_STAGE2_GUIDANCE = textwrap.dedent(
    r"""
    printf "\n\e[1;32mWelcome!\e[0m You can log in as \e[1mroot\e[0m with \e[1mno password\e[0m.\n"
    printf "\n\e[1;96mWant gcc, vim, or bash?\e[0m Try running \e[1mapk add vim\e[0m!\n"
    printf "\n\e[1;96mLooking for your files?\e[0m Try running \e[1mcd /{share}\e[0m!\n"
    printf "\n\e[1;96mTrying to exit the VM?\e[0m  Try hitting \e[1mCtrl-a\e[0m, then \e[1mx\e[0m!\n"
    """
).strip()


def render_stage2(
    hostname: str,
    interface: str = GUEST_INTERFACE,
    host_subpath: str = HOST_MOUNT_SUBPATH,
    policy: Optional[RespawnPolicy] = None,
) -> str:
    if policy is None:
        policy = login_policy()
    lines = [
        "#!/bin/sh",
        "set -eu",
        "",
        _STAGE2_BANNER,
        "",
        "(",
        "set -x",
        f"hostname {shlex.quote(hostname)}",
        f"ip link set dev {interface} up",
        "udhcpc",
        "passwd -d root",
        ")",
        "",
        _STAGE2_GUIDANCE.format(share=host_subpath.strip("/")),
    ]
    lines.extend(policy.render())
    return "\n".join(lines) + "\n"


def generate(hostname: str, layout: Optional[Stage1Layout] = None) -> BootScripts:
    if layout is None:
        layout = Stage1Layout()
    return BootScripts(
        stage1=render_stage1(layout),
        stage2=render_stage2(hostname, host_subpath=layout.host_subpath),
    )
