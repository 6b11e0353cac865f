"""The provisioning pipeline: every stage is skipped when its artifact is already in place."""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from kmu import bootscripts
from kmu.cache import ArtifactCache
from kmu.exceptions import MissingOptionsError, ProvisionError
from kmu.images import build_rootfs_image
from kmu.initfs import InitImageBuilder
from kmu.kconfig import check_requirements
from kmu.kernel import KernelWorkspace
from kmu.launcher import build_invocation, launch
from kmu.models import ProvisionConfig, VMInvocation
from kmu.utils import download_file, ensure_directory, log, sha256_file


class ProvisioningPipeline:
    """Runs the fixed sequence of stages; a failing stage aborts the whole run.

    Nothing is retried. Re-running the pipeline resumes after the last stage
    whose artifact survived, because each stage checks its artifact first.
    The kernel build and the launch are unconditional.
    """

    def __init__(
        self,
        cfg: ProvisionConfig,
        cache: Optional[ArtifactCache] = None,
        launcher: Callable[[VMInvocation], int] = launch,
    ) -> None:
        self.cfg = cfg
        self.cache = cache or ArtifactCache()
        self.launcher = launcher
        self.workspace = KernelWorkspace(cfg.kernel_dir)
        self._configured_this_run = False

    def plan(self) -> List[Tuple[str, bool]]:
        """Return (stage, will run) pairs without touching anything."""
        cfg = self.cfg
        return [
            ("clone kernel source", not self.cache.is_present(self.workspace.path)),
            ("configure kernel", not self.cache.is_present(self.workspace.config)),
            ("validate kernel config", True),
            ("build kernel", True),
            ("download rootfs archive", not self.cache.is_valid(cfg.rootfs.path, cfg.rootfs.sha256)),
            ("create rootfs image", not self.cache.is_present(cfg.rootfs_image)),
            ("create init image", not self.cache.is_present(cfg.initfs_image)),
            ("launch VM", True),
        ]

    def acquire_source(self) -> None:
        if self.cache.is_present(self.workspace.path):
            log("DEBUG", f"Kernel source present at {self.workspace.path}")
            return
        self.workspace.clone(self.cfg.kernel_clone_url)

    def configure(self) -> None:
        if self.cache.is_present(self.workspace.config):
            log("DEBUG", f"Using existing {self.workspace.config}")
            return
        self.workspace.configure()
        self._configured_this_run = True

    def validate(self) -> None:
        try:
            check_requirements(self.workspace.config)
        except MissingOptionsError:
            if not self._configured_this_run:
                log(
                    "INFO",
                    f"{self.workspace.config} predates this run and is never rewritten; "
                    "enable the options above (e.g. with `make menuconfig`) or delete it to regenerate",
                )
            raise

    def build_kernel(self) -> None:
        self.workspace.build(self.cfg.cpus)

    def fetch_rootfs(self) -> None:
        artifact = self.cfg.rootfs
        if self.cache.is_valid(artifact.path, artifact.sha256):
            log("DEBUG", f"Using cached {artifact.path}")
            return
        download_file(artifact.url, artifact.path)
        actual = sha256_file(artifact.path)
        if actual != artifact.sha256:
            raise ProvisionError(
                f"Downloaded {artifact.url} has SHA-256 {actual}, expected {artifact.sha256}"
            )

    def package_rootfs(self) -> None:
        if self.cache.is_present(self.cfg.rootfs_image):
            log("DEBUG", f"Using existing {self.cfg.rootfs_image}")
            return
        build_rootfs_image(self.cfg.rootfs.path, self.cfg.rootfs_image)

    def assemble_initfs(self) -> None:
        if self.cache.is_present(self.cfg.initfs_image):
            log("DEBUG", f"Using existing {self.cfg.initfs_image}")
            return
        scripts = bootscripts.generate(self.cfg.hostname)
        builder = InitImageBuilder(self.cfg.rootfs.path, scripts)
        builder.build(self.cfg.initfs_tar, self.cfg.initfs_image)

    def provision(self) -> None:
        ensure_directory(self.cfg.fs_dir)
        self.acquire_source()
        self.configure()
        self.validate()
        self.build_kernel()
        self.fetch_rootfs()
        self.package_rootfs()
        self.assemble_initfs()

    def launch(self, on_launch: Optional[Callable[[VMInvocation], None]] = None) -> int:
        invocation = build_invocation(self.cfg)
        if on_launch is not None:
            on_launch(invocation)
        return self.launcher(invocation)

    def run(
        self,
        launch_vm: bool = True,
        on_launch: Optional[Callable[[VMInvocation], None]] = None,
    ) -> int:
        self.provision()
        if not launch_vm:
            log("SUCCESS", "Provisioning complete; not launching the VM")
            return 0
        return self.launch(on_launch)
