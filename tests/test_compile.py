"""Tests for the compile driver."""

from __future__ import annotations

import pytest

from conftest import FakeRunner, make_flag
from mujs_builder.allocator import LibraryLocation
from mujs_builder.compile import CompileDriver
from mujs_builder.errors import CompileError
from mujs_builder.probe import CompilerFamily, PlatformKind, ToolchainInfo

GCC = ToolchainInfo(PlatformKind.POSIX, CompilerFamily.GCC, False, "/usr/bin/gcc")
MINGW = ToolchainInfo(PlatformKind.WINDOWS_COMPAT, CompilerFamily.GCC, False, "/ucrt64/bin/gcc")


class TestCompileDriver:
    def test_clean_then_release(self, make_config):
        cfg = make_config()
        runner = FakeRunner()
        artifact = CompileDriver(cfg, GCC, runner=runner).compile("normal")

        assert [c.cmd[:2] for c in runner.calls] == [["make", "clean"], ["make", "release"]]
        assert all(c.cwd == cfg.mujs_dir for c in runner.calls)
        assert artifact.path == cfg.mujs_dir / "build" / "release" / "mujs"
        assert artifact.exe_name == "mujs"

    def test_toolchain_and_jobs_override(self, make_config):
        runner = FakeRunner()
        CompileDriver(make_config(jobs=7), GCC, runner=runner).compile("normal")
        cmd = runner.builds()[0]
        assert "HAVE_READLINE=no" in cmd
        assert "-j7" in cmd
        assert make_flag(cmd, "CC") == "/usr/bin/gcc"

    def test_flag_merging(self, make_config):
        cfg = make_config()
        runner = FakeRunner()
        CompileDriver(cfg, GCC, runner=runner).compile("pgo-gen", ["-fprofile-generate", "-g"], ["-fprofile-generate"])
        cflags = make_flag(runner.builds()[0], "CFLAGS").split()
        assert cflags[:4] == ["-O2", "-fno-common", "-Wall", "-Wextra"]
        assert f"-I{cfg.mujs_dir}" in cflags
        assert cflags[-2:] == ["-fprofile-generate", "-g"]
        assert make_flag(runner.builds()[0], "LDFLAGS") == "-fprofile-generate"

    def test_allocator_flags_always_added(self, make_config, tmp_path):
        cfg = make_config(allocator_enabled=True)
        loc = LibraryLocation(prefix=tmp_path / "mi")
        runner = FakeRunner()
        CompileDriver(cfg, GCC, allocator=loc, runner=runner).compile("normal")
        cmd = runner.builds()[0]
        assert f"-I{tmp_path / 'mi' / 'include'}" in make_flag(cmd, "CFLAGS")
        assert make_flag(cmd, "LDFLAGS") == f"-L{tmp_path / 'mi' / 'lib'} -lmimalloc"

    def test_static_allocator_forces_whole_archive(self, make_config, tmp_path):
        cfg = make_config(allocator_enabled=True, static_allocator=True)
        loc = LibraryLocation(prefix=tmp_path / "mi", static=True)
        runner = FakeRunner()
        CompileDriver(cfg, GCC, allocator=loc, runner=runner).compile("normal")
        ldflags = make_flag(runner.builds()[0], "LDFLAGS")
        archive = tmp_path / "mi" / "lib" / "libmimalloc.a"
        assert f"-Wl,--whole-archive {archive} -Wl,--no-whole-archive" in ldflags
        assert ldflags.endswith("-lpthread")

    def test_nothing_to_clean_is_tolerated(self, make_config):
        runner = FakeRunner()
        runner.fail_when(lambda cmd: cmd == ["make", "clean"], returncode=2)
        artifact = CompileDriver(make_config(), GCC, runner=runner).compile("normal")
        assert artifact.path.is_file()

    def test_make_failure_names_stage(self, make_config):
        runner = FakeRunner()
        runner.fail_when(lambda cmd: cmd[:2] == ["make", "release"])
        with pytest.raises(CompileError) as exc:
            CompileDriver(make_config(), GCC, runner=runner).compile("pgo-use")
        assert exc.value.stage == "pgo-use"
        assert "[pgo-use]" in str(exc.value)

    def test_missing_binary_is_an_error(self, make_config):
        runner = FakeRunner(exe_name="something-else")
        with pytest.raises(CompileError, match="was not produced"):
            CompileDriver(make_config(), GCC, runner=runner).compile("normal")

    def test_windows_layer_exe_name(self, make_config):
        runner = FakeRunner(exe_name="mujs.exe")
        artifact = CompileDriver(make_config(), MINGW, runner=runner).compile("normal")
        assert artifact.exe_name == "mujs.exe"
        assert artifact.path.name == "mujs.exe"

    def test_repeat_call_is_equivalent(self, make_config):
        cfg = make_config()
        runner = FakeRunner()
        driver = CompileDriver(cfg, GCC, runner=runner)
        first = driver.compile("normal")
        second = driver.compile("normal")
        assert first == second
        assert runner.builds()[0] == runner.builds()[1]
