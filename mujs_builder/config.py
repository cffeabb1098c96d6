import json
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from mujs_builder.console import console
from mujs_builder.errors import ConfigError


# =========================
# DEFAULTS
# =========================
MUJS_REPO_DEFAULT = "https://github.com/ccxvii/mujs.git"
MIMALLOC_REPO_DEFAULT = "https://github.com/microsoft/mimalloc.git"
TARGET_DEFAULT = "UNKNOWN"
TRAIN_SCRIPT_DEFAULT = "v8v7.js"
SAMPLES_DEFAULT = 8
MIN_SAMPLES = 2
ARCHIVE_BASE = "mujs-pgo"
PROFDATA_TOOL = "llvm-profdata"

# mode flag -> (pgo, mimalloc)
MODE_FLAGS = {
    "--pgo": (True, False),
    "--mimalloc": (False, True),
    "--pgo-mimalloc": (True, True),
    "--opt": (True, True),
}

# Keys accepted in a --config JSON file and their types. All are optional.
CONFIG_KEYS = {
    "mujs_repo": str,
    "mimalloc_repo": str,
    "jobs": int,
    "samples": int,
    "train_script": str,
    "compiler": str,
    "compress": bool,
    "static_mimalloc": bool,
    "profdata_tool": str,
}

USAGE = f"""\
Usage: mujs-build [--pgo|--mimalloc|--pgo-mimalloc|--opt] [custom-tag]
                  [--mujs-repo <url>] [--mimalloc-repo <url>] [-j N]
                  [--samples N] [--train-script <file>] [--config <file.json>]
                  [--no-compress] [--static-mimalloc]
  --pgo               enable PGO build path
  --mimalloc          build & link with mimalloc
  --pgo-mimalloc      enable both PGO and mimalloc (alias: --opt)
  custom-tag          tag used to name the archive (default: {TARGET_DEFAULT})
  --mujs-repo URL     override mujs repo (default: {MUJS_REPO_DEFAULT})
  --mimalloc-repo URL override mimalloc repo (default: {MIMALLOC_REPO_DEFAULT})
  -j, --jobs N        parallel build jobs (default: $JOBS or CPU count)
  --samples N         training runs per PGO build (default: {SAMPLES_DEFAULT}, min: {MIN_SAMPLES})
  --train-script FILE training workload (default: ./{TRAIN_SCRIPT_DEFAULT})
  --config FILE       JSON file with default option values
  --no-compress       skip creating the .tar.gz archive
  --static-mimalloc   link libmimalloc.a instead of the shared library
"""


class UsageError(ConfigError):
    pass


# =========================
# BUILD CONFIG
# =========================
@dataclass(frozen=True)
class BuildConfig:
    pgo_enabled: bool
    allocator_enabled: bool
    jobs: int
    compiler: str
    mujs_repo: str
    mimalloc_repo: str
    target: str
    work_dir: Path
    train_script: Path
    samples: int = SAMPLES_DEFAULT
    compress: bool = True
    static_allocator: bool = False
    profdata_tool: str = PROFDATA_TOOL

    def __post_init__(self) -> None:
        if self.jobs < 1:
            raise ConfigError(f"jobs must be >= 1, got {self.jobs}")
        if self.samples < MIN_SAMPLES:
            raise ConfigError(f"samples must be >= {MIN_SAMPLES}, got {self.samples}")
        if not self.work_dir.is_absolute():
            raise ConfigError(f"work_dir must be absolute: {self.work_dir}")

    @property
    def src_dir(self) -> Path:
        return self.work_dir / "build-src"

    @property
    def mujs_dir(self) -> Path:
        return self.src_dir / "mujs"

    @property
    def mimalloc_dir(self) -> Path:
        return self.src_dir / "mimalloc"

    @property
    def mimalloc_prefix(self) -> Path:
        return self.src_dir / "mimalloc-build"

    @property
    def pgo_dir(self) -> Path:
        return self.src_dir / "pgo-data"

    @property
    def profdata_file(self) -> Path:
        return self.src_dir / "default.profdata"

    @property
    def variant(self) -> str:
        parts = []
        if self.pgo_enabled:
            parts.append("pgo")
        if self.allocator_enabled:
            parts.append("mimalloc")
        return "-".join(parts)

    @property
    def output_dir(self) -> Path:
        name = f"dist-{self.variant}" if self.variant else "dist"
        return self.work_dir / name

    @property
    def exe_stem(self) -> str:
        return f"mujs-{self.variant}" if self.variant else "mujs"

    @property
    def archive_path(self) -> Path:
        return self.work_dir / f"{ARCHIVE_BASE}-{self.target}.tar.gz"

    def summary(self) -> Dict[str, Any]:
        return {
            "pgo_enabled": self.pgo_enabled,
            "mimalloc_enabled": self.allocator_enabled,
            "static_mimalloc": self.static_allocator,
            "target": self.target,
            "jobs": self.jobs,
            "compiler": self.compiler or "(none found)",
            "mujs_repo": self.mujs_repo,
            "mimalloc_repo": self.mimalloc_repo,
            "train_script": str(self.train_script),
            "samples": self.samples,
            "output_dir": str(self.output_dir),
            "compress": self.compress,
        }


# =========================
# ARGUMENT PARSING
# =========================
@dataclass
class CliOptions:
    """Raw values taken from the command line; None means "not given"."""
    pgo: bool = False
    mimalloc: bool = False
    target: Optional[str] = None
    mujs_repo: Optional[str] = None
    mimalloc_repo: Optional[str] = None
    jobs: Optional[int] = None
    samples: Optional[int] = None
    train_script: Optional[str] = None
    config_file: Optional[str] = None
    compress: Optional[bool] = None
    static_mimalloc: Optional[bool] = None


def _to_int(flag: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise UsageError(f"{flag} expects an integer, got '{value}'")


def parse_args(argv: List[str]) -> CliOptions:
    opts = CliOptions()
    args = list(argv)
    i = 0

    def take_value(flag: str) -> str:
        nonlocal i
        if i + 1 >= len(args):
            raise UsageError(f"{flag} requires a value")
        i += 1
        return args[i]

    while i < len(args):
        arg = args[i]
        if arg in ("-h", "--help"):
            console.print(USAGE, end="", highlight=False, markup=False, soft_wrap=True)
            sys.exit(0)
        elif arg in MODE_FLAGS:
            pgo, mimalloc = MODE_FLAGS[arg]
            opts.pgo = opts.pgo or pgo
            opts.mimalloc = opts.mimalloc or mimalloc
            # optional tag directly after the mode flag
            if i + 1 < len(args) and not args[i + 1].startswith("-"):
                i += 1
                opts.target = args[i]
        elif arg == "--mujs-repo":
            opts.mujs_repo = take_value(arg)
        elif arg == "--mimalloc-repo":
            opts.mimalloc_repo = take_value(arg)
        elif arg in ("-j", "--jobs"):
            opts.jobs = _to_int(arg, take_value(arg))
        elif arg == "--samples":
            opts.samples = _to_int(arg, take_value(arg))
        elif arg == "--train-script":
            opts.train_script = take_value(arg)
        elif arg == "--config":
            opts.config_file = take_value(arg)
        elif arg == "--no-compress":
            opts.compress = False
        elif arg == "--static-mimalloc":
            opts.static_mimalloc = True
        else:
            raise UsageError(f"Unknown arg: {arg}")
        i += 1
    return opts


# =========================
# CONFIG FILE
# =========================
def read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Failed to read JSON config {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"JSON config {path} must contain an object")
    return data


def validate_config(cfg: Dict[str, Any]) -> None:
    for k, v in cfg.items():
        if k not in CONFIG_KEYS:
            raise ConfigError(f"Unknown config key: {k}")
        t = CONFIG_KEYS[k]
        # bool is a subclass of int; reject it where a number is expected
        if not isinstance(v, t) or (t is int and isinstance(v, bool)):
            raise ConfigError(f"Missing or invalid config key: {k} (expected {t.__name__})")


# =========================
# RESOLUTION
# =========================
def default_compiler(which: Callable[[str], Optional[str]] = shutil.which) -> str:
    return which("gcc") or which("clang") or ""


def default_jobs() -> int:
    return os.cpu_count() or 2


def resolve_config(
    opts: CliOptions,
    env: Optional[Mapping[str, str]] = None,
    work_dir: Optional[Path] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> BuildConfig:
    """Merge defaults, environment, config file and flags into a BuildConfig.

    Later sources win: defaults < env (CC, JOBS) < --config file < flags.
    """
    env = os.environ if env is None else env
    work_dir = (work_dir or Path.cwd()).resolve()

    file_cfg: Dict[str, Any] = {}
    if opts.config_file:
        file_cfg = read_json(Path(opts.config_file))
        validate_config(file_cfg)

    def pick(flag_value: Any, key: str, fallback: Any) -> Any:
        if flag_value is not None:
            return flag_value
        if key in file_cfg:
            return file_cfg[key]
        return fallback

    # JOBS is only consulted when nothing with higher precedence sets jobs
    jobs = pick(opts.jobs, "jobs", None)
    if jobs is None:
        if env.get("JOBS"):
            try:
                jobs = int(env["JOBS"])
            except ValueError:
                raise ConfigError(f"JOBS must be an integer, got '{env['JOBS']}'")
        else:
            jobs = default_jobs()

    compiler = pick(None, "compiler", env.get("CC") or default_compiler(which))
    train_script = Path(pick(opts.train_script, "train_script", TRAIN_SCRIPT_DEFAULT))
    if not train_script.is_absolute():
        train_script = work_dir / train_script

    return BuildConfig(
        pgo_enabled=opts.pgo,
        allocator_enabled=opts.mimalloc,
        jobs=jobs,
        compiler=compiler,
        mujs_repo=pick(opts.mujs_repo, "mujs_repo", MUJS_REPO_DEFAULT),
        mimalloc_repo=pick(opts.mimalloc_repo, "mimalloc_repo", MIMALLOC_REPO_DEFAULT),
        target=opts.target or TARGET_DEFAULT,
        work_dir=work_dir,
        train_script=train_script,
        samples=pick(opts.samples, "samples", SAMPLES_DEFAULT),
        compress=pick(opts.compress, "compress", True),
        static_allocator=pick(opts.static_mimalloc, "static_mimalloc", False),
        profdata_tool=pick(None, "profdata_tool", PROFDATA_TOOL),
    )
