"""Host environment probe: platform kind, required tools, compiler family."""

import os
import platform
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional, Pattern, Tuple

from mujs_builder.config import BuildConfig
from mujs_builder.console import Runner, run
from mujs_builder.errors import MissingToolError


class PlatformKind(Enum):
    POSIX = "posix"
    MACOS = "macos"
    WINDOWS_COMPAT = "windows-compat"


class CompilerFamily(Enum):
    GCC = "gcc"
    LLVM_CLANG = "clang"
    UNKNOWN = "unknown"


BASELINE_TOOLS = ["git", "make", "awk", "sed"]
ALLOCATOR_TOOLS = ["cmake"]

# Checked in order, first match wins. GCC comes first: some vendor builds
# mention both names in their --version banner.
COMPILER_RULES: List[Tuple[CompilerFamily, Pattern[str]]] = [
    # distro `cc` banners only name the FSF, not gcc
    (CompilerFamily.GCC, re.compile(r"gcc|free software foundation", re.IGNORECASE)),
    (CompilerFamily.LLVM_CLANG, re.compile(r"clang", re.IGNORECASE)),
]

_WINDOWS_UNAME_RE = re.compile(r"MINGW|MSYS|CYGWIN", re.IGNORECASE)


@dataclass(frozen=True)
class ToolchainInfo:
    platform: PlatformKind
    compiler_family: CompilerFamily
    has_profile_merge_tool: bool
    compiler_path: str
    compiler_version: str = ""

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.platform is PlatformKind.WINDOWS_COMPAT else ""


def classify_compiler(version_string: str) -> CompilerFamily:
    for family, pattern in COMPILER_RULES:
        if pattern.search(version_string):
            return family
    return CompilerFamily.UNKNOWN


def detect_platform(env: Mapping[str, str], system_name: str) -> PlatformKind:
    if env.get("MSYSTEM") or _WINDOWS_UNAME_RE.search(system_name):
        return PlatformKind.WINDOWS_COMPAT
    if system_name == "Darwin":
        return PlatformKind.MACOS
    return PlatformKind.POSIX


def require_tool(name: str, which: Callable[[str], Optional[str]] = shutil.which) -> str:
    resolved = which(name)
    if not resolved:
        raise MissingToolError(name)
    return resolved


def query_compiler_version(compiler: str, runner: Runner = run) -> str:
    result = runner([compiler, "--version"], capture=True)
    if not result.ok:
        return ""
    return result.stdout


def probe(
    config: BuildConfig,
    env: Optional[Mapping[str, str]] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    runner: Runner = run,
    system_name: Optional[str] = None,
) -> ToolchainInfo:
    env = os.environ if env is None else env
    system_name = platform.system() if system_name is None else system_name

    for tool in BASELINE_TOOLS:
        require_tool(tool, which)
    if not config.compiler:
        raise MissingToolError("gcc or clang")
    compiler_path = require_tool(config.compiler, which)
    if config.allocator_enabled:
        for tool in ALLOCATOR_TOOLS:
            require_tool(tool, which)

    version = query_compiler_version(compiler_path, runner)
    family = classify_compiler(version)

    has_merge_tool = False
    if config.pgo_enabled:
        has_merge_tool = which(config.profdata_tool) is not None

    return ToolchainInfo(
        platform=detect_platform(env, system_name),
        compiler_family=family,
        has_profile_merge_tool=has_merge_tool,
        compiler_path=compiler_path,
        compiler_version=version.splitlines()[0] if version else "",
    )
