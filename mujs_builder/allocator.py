from dataclasses import dataclass
from pathlib import Path
from typing import List

from mujs_builder.console import Runner, log_step, log_success, run
from mujs_builder.errors import AllocatorBuildError
from mujs_builder.probe import PlatformKind


@dataclass(frozen=True)
class LibraryLocation:
    prefix: Path
    static: bool = False

    @property
    def include_dir(self) -> Path:
        return self.prefix / "include"

    @property
    def lib_dir(self) -> Path:
        return self.prefix / "lib"

    @property
    def shared_library(self) -> Path:
        return self.lib_dir / "libmimalloc.so"

    @property
    def static_library(self) -> Path:
        return self.lib_dir / "libmimalloc.a"

    def shared_library_for(self, platform: PlatformKind) -> Path:
        if platform is PlatformKind.MACOS:
            return self.lib_dir / "libmimalloc.dylib"
        return self.shared_library

    def cflags(self) -> List[str]:
        return [f"-I{self.include_dir}"]

    def ldflags(self, platform: PlatformKind = PlatformKind.POSIX) -> List[str]:
        if not self.static:
            return [f"-L{self.lib_dir}", "-lmimalloc"]
        # LDFLAGS precede the objects on mujs's link line, so force every
        # member in; otherwise nothing pulls in the malloc override
        if platform is PlatformKind.MACOS:
            return [f"-Wl,-force_load,{self.static_library}", "-lpthread"]
        return [
            "-Wl,--whole-archive", str(self.static_library), "-Wl,--no-whole-archive",
            "-lpthread",
        ]


def build_allocator(
    source: Path,
    prefix: Path,
    jobs: int,
    static: bool = False,
    runner: Runner = run,
) -> LibraryLocation:
    build_dir = source / "build"
    steps = [
        ("configure", [
            "cmake", "-S", str(source), "-B", str(build_dir),
            "-DCMAKE_BUILD_TYPE=Release",
            "-DCMAKE_POSITION_INDEPENDENT_CODE=ON",
            f"-DCMAKE_INSTALL_PREFIX={prefix}",
            # flat include/ and lib/ under the prefix
            "-DCMAKE_INSTALL_LIBDIR=lib",
            "-DMI_INSTALL_TOPLEVEL=ON",
            "-DMI_BUILD_TESTS=OFF",
        ]),
        ("build", ["cmake", "--build", str(build_dir), f"-j{jobs}"]),
        ("install", ["cmake", "--install", str(build_dir)]),
    ]

    log_step(f"Building mimalloc (out -> {prefix})...")
    prefix.mkdir(parents=True, exist_ok=True)
    for step, cmd in steps:
        result = runner(cmd, placeholder=f"mimalloc: {step}", placeholder_column="Building mimalloc...")
        if not result.ok:
            raise AllocatorBuildError(step, result.returncode)

    log_success(f"mimalloc installed to {prefix}")
    return LibraryLocation(prefix=prefix, static=static)
