#!/usr/bin/env python3
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from mujs_builder.allocator import LibraryLocation, build_allocator
from mujs_builder.compile import CompileDriver
from mujs_builder.config import USAGE, BuildConfig, UsageError, parse_args, resolve_config
from mujs_builder.console import LOG_COLOR, Runner, console, die, log_info, log_step, log_success, run
from mujs_builder.errors import MujsBuildError
from mujs_builder.fetch import ensure
from mujs_builder.package import PackageResult, compress, package
from mujs_builder.pgo import PgoController, PgoOutcome
from mujs_builder.probe import ToolchainInfo, probe


# =========================
# OVERVIEW
# =========================
def add_table(title: str, data: Dict[str, Any], bool_color: bool = True) -> None:
    if not data:
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="yellow")
    for k, v in data.items():
        if isinstance(v, bool) and bool_color:
            val = "[green]True[/]" if v else "[red]False[/]"
        else:
            val = str(v)
        table.add_row(str(k), val)
    console.print(f"[bold underline]{title}[/]")
    console.print(table)


def display_intro(config: BuildConfig) -> None:
    console.rule("[bold green]mujs Builder Configuration Overview[/]")
    add_table("Build", config.summary())


def display_toolchain(toolchain: ToolchainInfo) -> None:
    add_table("Toolchain", {
        "platform": toolchain.platform.value,
        "compiler": toolchain.compiler_path,
        "version": toolchain.compiler_version or "(unknown)",
        "family": toolchain.compiler_family.value,
        "llvm-profdata": toolchain.has_profile_merge_tool,
    })


def display_result(outcome: PgoOutcome, result: PackageResult) -> None:
    add_table("Result", {
        "pgo state": outcome.state.value,
        "stages": " -> ".join(outcome.stages),
        "training samples ok": "-" if outcome.samples_ok is None else outcome.samples_ok,
        "executable": result.executable,
        "wrapper": result.wrapper or "-",
        "archive": result.archive or "-",
    }, bool_color=False)


# =========================
# PIPELINE
# =========================
def run_build(
    config: BuildConfig,
    runner: Runner = run,
    which: Callable[[str], Optional[str]] = shutil.which,
    env: Optional[Mapping[str, str]] = None,
    system_name: Optional[str] = None,
) -> PackageResult:
    env = os.environ if env is None else env

    log_step("Probing build environment")
    toolchain = probe(config, env=env, which=which, runner=runner, system_name=system_name)
    display_toolchain(toolchain)

    config.src_dir.mkdir(parents=True, exist_ok=True)

    log_step("Fetching sources")
    ensure(config.mujs_repo, config.mujs_dir, runner=runner)

    allocator: Optional[LibraryLocation] = None
    if config.allocator_enabled:
        ensure(config.mimalloc_repo, config.mimalloc_dir, runner=runner)
        allocator = build_allocator(
            config.mimalloc_dir,
            config.mimalloc_prefix,
            config.jobs,
            static=config.static_allocator,
            runner=runner,
        )

    driver = CompileDriver(config, toolchain, allocator=allocator, runner=runner)
    outcome = PgoController(config, toolchain, driver, runner=runner, env=env).run()
    log_success(f"Build finished in state '{outcome.state.value}': {outcome.artifact.path}")

    result = package(outcome.artifact, config, toolchain, allocator)
    if config.compress:
        archive = compress(result.output_dir, config.archive_path)
        result = PackageResult(
            output_dir=result.output_dir,
            executable=result.executable,
            wrapper=result.wrapper,
            archive=archive,
        )

    display_result(outcome, result)
    return result


# =========================
# MAIN
# =========================
def main(argv: Optional[List[str]] = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    try:
        opts = parse_args(argv)
    except UsageError as e:
        console.print(f"[{LOG_COLOR['error']}]{escape(str(e))}[/]")
        console.print(USAGE, highlight=False, markup=False, soft_wrap=True)
        sys.exit(1)

    try:
        config = resolve_config(opts, work_dir=Path.cwd())
        display_intro(config)
        result = run_build(config)
    except MujsBuildError as e:
        die(str(e))
        return

    log_info(f"Output: {result.output_dir}")
    console.print(Panel(f"Build complete → {result.executable}", style=LOG_COLOR["success"]))


if __name__ == "__main__":
    main()
