"""Tests for kmu.kernel module."""

from __future__ import annotations

from unittest.mock import call, patch

from kmu.kernel import KernelWorkspace


class TestPaths:
    def test_config_and_image(self, tmp_path):
        ws = KernelWorkspace(tmp_path / "linux")
        assert ws.config == tmp_path / "linux" / ".config"
        assert ws.image == tmp_path / "linux" / "arch" / "x86_64" / "boot" / "bzImage"


class TestClone:
    def test_runs_git_clone(self, tmp_path):
        ws = KernelWorkspace(tmp_path / "linux")
        with patch("kmu.kernel.run") as mock_run:
            ws.clone("https://example.com/linux.git")
        mock_run.assert_called_once_with(["git", "clone", "https://example.com/linux.git", str(tmp_path / "linux")])


class TestConfigure:
    def test_defconfig_overrides_olddefconfig(self, tmp_path):
        ws = KernelWorkspace(tmp_path)
        events = []

        def _make(cmd):
            events.append(cmd[-1])
            if cmd[-1] == "defconfig":
                ws.config.write_text("# CONFIG_SQUASHFS is not set\n")

        with patch("kmu.kernel.run", side_effect=_make):
            with patch("kmu.kernel.apply_overrides", side_effect=lambda path: events.append("overrides")):
                ws.configure()

        assert events == ["defconfig", "overrides", "olddefconfig"]

    def test_overrides_land_in_config(self, tmp_path):
        ws = KernelWorkspace(tmp_path)

        def _make(cmd):
            if cmd[-1] == "defconfig":
                ws.config.write_text("# CONFIG_SQUASHFS is not set\n")

        with patch("kmu.kernel.run", side_effect=_make):
            ws.configure()

        lines = ws.config.read_text().splitlines()
        assert "CONFIG_SQUASHFS=y" in lines
        assert "CONFIG_GDB_SCRIPTS=y" in lines


class TestBuild:
    def test_build_command_uses_parallelism(self, tmp_path):
        ws = KernelWorkspace(tmp_path)
        assert ws.build_command(4) == ["make", "-C", str(tmp_path), "bzImage", "-j", "6", "-l", "4"]

    def test_build_always_runs(self, tmp_path, capsys):
        ws = KernelWorkspace(tmp_path)
        with patch("kmu.kernel.run") as mock_run:
            ws.build(2)
            ws.image.parent.mkdir(parents=True)
            ws.image.write_bytes(b"kernel")
            ws.build(2)
        expected = call(["make", "-C", str(tmp_path), "bzImage", "-j", "3", "-l", "2"])
        assert mock_run.call_args_list == [expected, expected]
        out = capsys.readouterr().out
        assert "Building kernel..." in out
        assert "Rebuilding kernel..." in out
