from pathlib import Path

from mujs_builder.console import Runner, log_info, log_step, log_warn, run
from mujs_builder.errors import FetchError


def ensure(repo_url: str, local_path: Path, runner: Runner = run) -> None:
    """Make sure a shallow checkout of repo_url exists at local_path.

    A failed refresh of an existing checkout is only a warning: whatever is
    already on disk gets built.
    """
    if not local_path.exists():
        log_step(f"Cloning {local_path.name} from {repo_url} ...")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        result = runner(["git", "clone", "--depth", "1", repo_url, str(local_path)])
        if not result.ok:
            raise FetchError(repo_url, result.returncode)
        return

    log_info(f"{local_path.name} already present, fetching latest...")
    result = runner(["git", "-C", str(local_path), "fetch", "--depth=1"])
    if not result.ok:
        log_warn(f"git fetch failed in {local_path} (exit {result.returncode}); using existing checkout")
