"""Tests for kmu.bootscripts module."""

from __future__ import annotations

import itertools

import pytest

from kmu import bootscripts
from kmu.bootscripts import (
    RespawnPolicy,
    RespawnState,
    Stage1Layout,
    login_policy,
    render_stage1,
    render_stage2,
    stage1_steps,
    validate_stage1_order,
)
from kmu.exceptions import ProvisionError


def _command_lines(script: str):
    return [line for line in script.splitlines() if line and not line.startswith(("#", "set "))]


def _index_of(lines, fragment):
    matches = [i for i, line in enumerate(lines) if fragment in line]
    assert matches, f"{fragment!r} not in script"
    return matches[0]


class TestStage1:
    def test_header(self):
        script = render_stage1(Stage1Layout())
        assert script.startswith("#!/bin/sh\nset -eux\n")

    def test_mount_ordering(self):
        lines = _command_lines(render_stage1(Stage1Layout()))
        lower = _index_of(lines, "-t squashfs")
        tmpfs = _index_of(lines, "-t tmpfs")
        overlay = _index_of(lines, "-t overlay")
        host = _index_of(lines, "-t 9p")
        dev = _index_of(lines, "--move")
        proc = _index_of(lines, "-t proc")
        sysfs = _index_of(lines, "-t sysfs")
        chroot = _index_of(lines, "exec chroot")
        assert lower < overlay
        assert tmpfs < overlay
        assert overlay < proc and overlay < sysfs and overlay < dev
        assert host < chroot
        assert chroot == len(lines) - 1

    def test_uses_structured_inputs(self):
        layout = Stage1Layout(rootfs_device="/dev/vdc", mount_tag="share", host_subpath="host")
        script = render_stage1(layout)
        assert "mount -t squashfs -o ro /dev/vdc /mnt/lower" in script
        assert "mount -t 9p       share /mnt/root/host -o trans=virtio,version=9p2000.L,msize=128M" in script

    def test_overlay_options(self):
        script = render_stage1(Stage1Layout())
        assert (
            "mount -t overlay overlay /mnt/root "
            "-o lowerdir=/mnt/lower,upperdir=/mnt/upper/files,workdir=/mnt/upper/work"
        ) in script
        assert "mkdir /mnt/upper/files /mnt/upper/work" in script

    def test_installs_stage2_as_new_init(self):
        lines = _command_lines(render_stage1(Stage1Layout()))
        assert "install /init/stage2 /mnt/root/init" in lines
        assert lines[-1] == "exec chroot /mnt/root /init"

    def test_no_guest_customisation(self):
        script = render_stage1(Stage1Layout())
        for word in ("hostname", "udhcpc", "passwd", "getty"):
            assert word not in script


class TestValidateStage1Order:
    def test_default_steps_are_valid(self):
        validate_stage1_order(stage1_steps(Stage1Layout()))

    def test_overlay_before_lower_rejected(self):
        steps = stage1_steps(Stage1Layout())
        steps[0], steps[3] = steps[3], steps[0]
        with pytest.raises(ProvisionError, match="/mnt/lower"):
            validate_stage1_order(steps)

    def test_proc_before_overlay_rejected(self):
        steps = stage1_steps(Stage1Layout())
        proc = next(step for step in steps if "-t proc" in step.command)
        steps.remove(proc)
        steps.insert(1, proc)
        with pytest.raises(ProvisionError, match="/mnt/root"):
            validate_stage1_order(steps)

    def test_chroot_before_host_mount_rejected(self):
        steps = stage1_steps(Stage1Layout())
        host = next(step for step in steps if "-t 9p" in step.command)
        steps.remove(host)
        steps.append(host)
        with pytest.raises(ProvisionError):
            validate_stage1_order(steps)

    def test_must_end_with_exec(self):
        steps = stage1_steps(Stage1Layout())[:-1]
        with pytest.raises(ProvisionError, match="must end"):
            validate_stage1_order(steps)


class TestRespawnPolicy:
    def test_transitions(self):
        assert RespawnPolicy.next_state(RespawnState.SPAWN) is RespawnState.WAIT
        assert RespawnPolicy.next_state(RespawnState.WAIT) is RespawnState.RESPAWN
        assert RespawnPolicy.next_state(RespawnState.RESPAWN) is RespawnState.WAIT

    def test_no_terminal_state(self):
        assert not any(RespawnPolicy.is_terminal(state) for state in RespawnState)

    def test_states_sequence(self):
        states = list(itertools.islice(login_policy().states(), 5))
        assert states == [
            RespawnState.SPAWN,
            RespawnState.WAIT,
            RespawnState.RESPAWN,
            RespawnState.WAIT,
            RespawnState.RESPAWN,
        ]

    def test_sessions_respawn_after_every_exit(self):
        calls = []

        def spawn(command):
            calls.append(command)
            return len(calls) % 2

        statuses = list(itertools.islice(RespawnPolicy(["getty", "0", "/dev/ttyS0"]).sessions(spawn), 4))
        assert statuses == [1, 0, 1, 0]
        assert calls == [("getty", "0", "/dev/ttyS0")] * 4

    def test_render_is_unconditional_loop(self):
        assert login_policy("/dev/ttyS1").render() == ["while true; do", "\tgetty 0 /dev/ttyS1", "done"]


class TestStage2:
    def test_guest_setup_order(self):
        lines = render_stage2("alice-vm").splitlines()
        hostname = _index_of(lines, "hostname alice-vm")
        link = _index_of(lines, "ip link set dev eth0 up")
        dhcp = _index_of(lines, "udhcpc")
        passwd = _index_of(lines, "passwd -d root")
        loop = _index_of(lines, "while true; do")
        assert hostname < link < dhcp < passwd < loop

    def test_ends_with_login_loop(self):
        lines = render_stage2("alice-vm").splitlines()
        assert lines[-3:] == ["while true; do", "\tgetty 0 /dev/ttyS0", "done"]

    def test_hostname_is_quoted(self):
        script = render_stage2("bob's-vm")
        assert "hostname 'bob'\"'\"'s-vm'" in script

    def test_guidance_points_at_share(self):
        script = render_stage2("alice-vm", host_subpath="host")
        assert "cd /host" in script
        assert "Ctrl-a" in script


class TestGenerate:
    def test_returns_both_stages(self):
        scripts = bootscripts.generate("alice-vm")
        assert scripts.stage1.startswith("#!/bin/sh")
        assert scripts.stage2.startswith("#!/bin/sh")
        assert "exec chroot" in scripts.stage1
        assert "getty" in scripts.stage2
