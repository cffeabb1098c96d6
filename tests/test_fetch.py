"""Tests for the dependency fetcher."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeRunner
from mujs_builder.errors import FetchError
from mujs_builder.fetch import ensure

REPO = "https://example.invalid/mujs.git"


class TestEnsure:
    def test_shallow_clone_when_missing(self, tmp_path: Path):
        runner = FakeRunner()
        dest = tmp_path / "build-src" / "mujs"
        ensure(REPO, dest, runner=runner)
        assert runner.commands("git") == [["git", "clone", "--depth", "1", REPO, str(dest)]]
        assert dest.is_dir()

    def test_clone_failure_is_fatal(self, tmp_path: Path):
        runner = FakeRunner()
        runner.fail_when(lambda cmd: cmd[:2] == ["git", "clone"], returncode=128)
        with pytest.raises(FetchError) as exc:
            ensure(REPO, tmp_path / "mujs", runner=runner)
        assert exc.value.returncode == 128
        assert REPO in str(exc.value)

    def test_existing_checkout_is_refreshed(self, tmp_path: Path):
        dest = tmp_path / "mujs"
        dest.mkdir()
        runner = FakeRunner()
        ensure(REPO, dest, runner=runner)
        assert runner.commands("git") == [["git", "-C", str(dest), "fetch", "--depth=1"]]

    def test_refresh_failure_is_not_fatal(self, tmp_path: Path):
        dest = tmp_path / "mujs"
        dest.mkdir()
        (dest / "jsrun.c").write_text("/* keep me */")
        runner = FakeRunner()
        runner.fail_when(lambda cmd: "fetch" in cmd)
        ensure(REPO, dest, runner=runner)
        assert (dest / "jsrun.c").read_text() == "/* keep me */"
        assert not runner.commands("git", "clone")
