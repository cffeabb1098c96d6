"""Exceptions raised by the build pipeline.

Subclasses of ``MujsBuildError`` abort the run. Subclasses of
``BuildWarning`` are caught where they occur, logged, and the pipeline moves
on along its fallback path.
"""


class MujsBuildError(Exception):
    """Base exception for all fatal build errors."""


class ConfigError(MujsBuildError):
    """Raised when options, environment or config file values are invalid."""


class MissingToolError(MujsBuildError):
    """Raised when a required host tool is not available."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Required command '{tool}' not found. Install it and retry.")


class FetchError(MujsBuildError):
    """Raised when the initial clone of a dependency fails."""

    def __init__(self, repo_url: str, returncode: int):
        self.repo_url = repo_url
        self.returncode = returncode
        super().__init__(f"git clone of {repo_url} failed (exit {returncode})")


class AllocatorBuildError(MujsBuildError):
    """Raised when configuring, building or installing mimalloc fails."""

    def __init__(self, step: str, returncode: int):
        self.step = step
        self.returncode = returncode
        super().__init__(f"mimalloc {step} step failed (exit {returncode})")


class CompileError(MujsBuildError):
    """Raised when a mujs build stage fails."""

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        super().__init__(f"[{stage}] {reason}")


class BuildWarning(Exception):
    """Base class for conditions that degrade the build but never abort it."""


class TrainingRunFailure(BuildWarning):
    def __init__(self, sample: int, returncode: int):
        self.sample = sample
        self.returncode = returncode
        super().__init__(f"pgo sample {sample} exited with status {returncode}")


class ProfileArtifactMissing(BuildWarning):
    pass
