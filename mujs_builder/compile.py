from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from mujs_builder.allocator import LibraryLocation
from mujs_builder.config import BuildConfig
from mujs_builder.console import Runner, log_info, log_step, log_success, run
from mujs_builder.errors import CompileError
from mujs_builder.probe import ToolchainInfo

BASE_CFLAGS = ["-O2", "-fno-common", "-Wall", "-Wextra"]
# where `make release` leaves the binary, relative to the mujs checkout
RELEASE_DIR = Path("build/release")


@dataclass(frozen=True)
class BuildArtifact:
    path: Path
    exe_name: str


class CompileDriver:
    """Builds mujs through its own Makefile with an overridden toolchain.

    Every call cleans first, so the returned artifact always comes from the
    flags of that call and never from a previous stage.
    """

    def __init__(
        self,
        config: BuildConfig,
        toolchain: ToolchainInfo,
        allocator: Optional[LibraryLocation] = None,
        runner: Runner = run,
    ):
        self.config = config
        self.toolchain = toolchain
        self.allocator = allocator
        self.runner = runner

    @property
    def exe_name(self) -> str:
        return f"mujs{self.toolchain.exe_suffix}"

    def cflags(self, extra: Sequence[str]) -> List[str]:
        mujs_dir = self.config.mujs_dir
        flags = BASE_CFLAGS + [f"-I{mujs_dir}", f"-I{mujs_dir / 'include'}"]
        if self.allocator is not None:
            flags += self.allocator.cflags()
        return flags + list(extra)

    def ldflags(self, extra: Sequence[str]) -> List[str]:
        flags: List[str] = []
        if self.allocator is not None:
            flags += self.allocator.ldflags(self.toolchain.platform)
        return flags + list(extra)

    def compile(
        self,
        stage: str,
        extra_cflags: Sequence[str] = (),
        extra_ldflags: Sequence[str] = (),
    ) -> BuildArtifact:
        mujs_dir = self.config.mujs_dir
        log_step(f">>> [{stage}] Building mujs (CFLAGS=\"{' '.join(extra_cflags)}\")")

        if not self.runner(["make", "clean"], cwd=mujs_dir).ok:
            log_info(f"[{stage}] nothing to clean")

        cmd = [
            "make", "release", "HAVE_READLINE=no",
            f"-j{self.config.jobs}",
            f"CC={self.toolchain.compiler_path}",
            f"CFLAGS={' '.join(self.cflags(extra_cflags))}",
            f"LDFLAGS={' '.join(self.ldflags(extra_ldflags))}",
        ]
        result = self.runner(cmd, cwd=mujs_dir, placeholder=f"[{stage}] make release", placeholder_column="Compiling...")
        if not result.ok:
            raise CompileError(stage, f"make failed (exit {result.returncode})")

        exe_path = mujs_dir / RELEASE_DIR / self.exe_name
        if not exe_path.is_file():
            raise CompileError(stage, f"build finished but {exe_path} was not produced")

        log_success(f"[{stage}] Built {exe_path}")
        return BuildArtifact(path=exe_path, exe_name=self.exe_name)
