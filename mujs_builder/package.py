import shutil
import stat
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mujs_builder.allocator import LibraryLocation
from mujs_builder.compile import BuildArtifact
from mujs_builder.config import BuildConfig
from mujs_builder.console import console, log_info, log_step, log_success, log_warn
from mujs_builder.probe import PlatformKind, ToolchainInfo

WRAPPER_NAME = "run-with-mimalloc.sh"

WRAPPER_TEMPLATE = """\
#!/usr/bin/env bash
export {var}="${{{var}:+${var}:}}{library}"
exec "$(dirname "$0")/{exe}" "$@"
"""

# platform -> loader variable used to inject the shared allocator
PRELOAD_VARS = {
    PlatformKind.POSIX: "LD_PRELOAD",
    PlatformKind.MACOS: "DYLD_INSERT_LIBRARIES",
}


@dataclass(frozen=True)
class PackageResult:
    output_dir: Path
    executable: Path
    wrapper: Optional[Path] = None
    archive: Optional[Path] = None


def human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "K", "M"):
        if value < 1024:
            return f"{size}B" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"


def write_loader_wrapper(
    output_dir: Path,
    exe_name: str,
    allocator: LibraryLocation,
    platform: PlatformKind = PlatformKind.POSIX,
) -> Path:
    var = PRELOAD_VARS[platform]
    wrapper = output_dir / WRAPPER_NAME
    wrapper.write_text(WRAPPER_TEMPLATE.format(
        var=var,
        library=allocator.shared_library_for(platform),
        exe=exe_name,
    ))
    mode = wrapper.stat().st_mode
    wrapper.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    log_success(f"Created run wrapper {wrapper} (uses {var})")
    return wrapper


def package(
    artifact: BuildArtifact,
    config: BuildConfig,
    toolchain: ToolchainInfo,
    allocator: Optional[LibraryLocation] = None,
) -> PackageResult:
    output_dir = config.output_dir
    log_step(f"Packaging into {output_dir}")

    # never update in place: stale files from another mode must not survive
    if output_dir.exists():
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True)

    exe_name = f"{config.exe_stem}{toolchain.exe_suffix}"
    executable = output_dir / exe_name
    shutil.copy2(artifact.path, executable)
    log_success(f"Copied {artifact.path} -> {executable}")

    wrapper = None
    if allocator is not None and not allocator.static:
        if toolchain.platform in PRELOAD_VARS:
            wrapper = write_loader_wrapper(output_dir, exe_name, allocator, toolchain.platform)
        else:
            log_warn("Preload wrapper is not supported on this platform; make sure the mimalloc DLL is on PATH")

    return PackageResult(output_dir=output_dir, executable=executable, wrapper=wrapper)


def compress(output_dir: Path, archive_path: Path) -> Path:
    log_step(f"Compress {output_dir}")
    for item in sorted(output_dir.iterdir()):
        log_info(f"{item.name}  {human_size(item.stat().st_size)}")

    if archive_path.exists():
        archive_path.unlink()
    with tarfile.open(archive_path, "w:gz") as tar:
        tar.add(output_dir, arcname=".")

    size = archive_path.stat().st_size
    console.print(f"{archive_path}  {size} bytes ({human_size(size)})", highlight=False)
    return archive_path
