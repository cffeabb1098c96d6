"""Shared pytest fixtures: a fake command runner and config factory.

No real git, make, cmake or compiler is needed: the fake runner records every
command and creates the files the real tools would leave behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import pytest

from mujs_builder.config import BuildConfig
from mujs_builder.console import CommandResult

GCC_VERSION = "gcc (GCC) 13.2.1 20230801\nCopyright (C) 2023 Free Software Foundation, Inc.\n"
CLANG_VERSION = "clang version 17.0.6\nTarget: x86_64-pc-linux-gnu\nThread model: posix\n"


@dataclass
class Call:
    cmd: list[str]
    cwd: Path | None
    env: dict | None


class FakeRunner:
    def __init__(self, version: str = GCC_VERSION, exe_name: str = "mujs", emit_profraw: bool = False):
        self.version = version
        self.exe_name = exe_name
        self.emit_profraw = emit_profraw
        self.calls: list[Call] = []
        self._failures: list[tuple[Callable[[list[str]], bool], int]] = []
        self._samples = 0

    def fail_when(self, predicate: Callable[[list[str]], bool], returncode: int = 1) -> None:
        self._failures.append((predicate, returncode))

    def __call__(self, cmd, cwd=None, env=None, capture=False, placeholder=None, placeholder_column=None):
        cmd = list(cmd)
        self.calls.append(Call(cmd=cmd, cwd=cwd, env=dict(env) if env is not None else None))

        if is_training(cmd):
            self._samples += 1

        for predicate, code in self._failures:
            if predicate(cmd):
                return CommandResult(cmd=cmd, returncode=code)

        self._side_effect(cmd, cwd, env)
        stdout = self.version if cmd[-1] == "--version" else ""
        return CommandResult(cmd=cmd, returncode=0, stdout=stdout)

    def _side_effect(self, cmd, cwd, env):
        if cmd[:2] == ["git", "clone"]:
            Path(cmd[-1]).mkdir(parents=True, exist_ok=True)
        elif cmd[:2] == ["make", "release"]:
            out = Path(cwd) / "build" / "release" / self.exe_name
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(" ".join(cmd))
        elif is_training(cmd) and self.emit_profraw and env and "LLVM_PROFILE_FILE" in env:
            raw = Path(env["LLVM_PROFILE_FILE"].replace("%p", str(1000 + self._samples)))
            raw.parent.mkdir(parents=True, exist_ok=True)
            raw.write_bytes(b"\x81rforpl\xff")

    # ── query helpers ──

    def commands(self, *prefix: str) -> list[list[str]]:
        return [c.cmd for c in self.calls if c.cmd[: len(prefix)] == list(prefix)]

    def builds(self) -> list[list[str]]:
        return self.commands("make", "release")

    def training_runs(self) -> list[Call]:
        return [c for c in self.calls if is_training(c.cmd)]


def is_training(cmd: list[str]) -> bool:
    return Path(cmd[0]).name in ("mujs", "mujs.exe") and len(cmd) == 2


def make_flag(cmd: list[str], name: str) -> str:
    """Return the value of a NAME=value argument on a make command line."""
    for arg in cmd:
        if arg.startswith(f"{name}="):
            return arg[len(name) + 1 :]
    raise KeyError(name)


def fake_which(missing: tuple[str, ...] = ()) -> Callable[[str], str | None]:
    def which(name: str) -> str | None:
        if name in missing:
            return None
        return name if name.startswith("/") else f"/usr/bin/{name}"

    return which


@pytest.fixture
def make_config(tmp_path: Path):
    def factory(**overrides) -> BuildConfig:
        values = dict(
            pgo_enabled=False,
            allocator_enabled=False,
            jobs=4,
            compiler="gcc",
            mujs_repo="https://example.invalid/mujs.git",
            mimalloc_repo="https://example.invalid/mimalloc.git",
            target="linux-x64",
            work_dir=tmp_path,
            train_script=tmp_path / "v8v7.js",
        )
        values.update(overrides)
        return BuildConfig(**values)

    return factory
