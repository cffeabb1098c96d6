"""Profile-guided optimization controller.

Drives the compile driver through one of these paths::

    START -> NO_PGO                                  (PGO not requested)
    START -> INSTRUMENTED -> TRAINED -> OPTIMIZED    (GCC or clang PGO)
    START -> DEGRADED                                (clang without llvm-profdata,
                                                      or unknown compiler)
    START -> INSTRUMENTED -> TRAINED -> DEGRADED     (clang produced no usable profile)

Each terminal state leaves exactly one artifact. Missing profiling
infrastructure never fails the build: it falls back to a plain aggressive
optimization build instead.
"""

import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from mujs_builder.compile import BuildArtifact, CompileDriver
from mujs_builder.config import BuildConfig
from mujs_builder.console import Runner, log_info, log_step, log_success, log_warn, run
from mujs_builder.errors import ProfileArtifactMissing, TrainingRunFailure
from mujs_builder.probe import CompilerFamily, ToolchainInfo


class PgoState(Enum):
    START = "start"
    NO_PGO = "no-pgo"
    INSTRUMENTED = "instrumented"
    TRAINED = "trained"
    OPTIMIZED = "optimized"
    DEGRADED = "degraded"


TERMINAL_STATES = {PgoState.NO_PGO, PgoState.OPTIMIZED, PgoState.DEGRADED}

FALLBACK_CFLAGS = ["-O3", "-march=native", "-flto", "-funroll-loops"]
# LTO code generation happens at link time, so the optimization flags go there too
LTO_LDFLAGS = ["-O3", "-march=native", "-flto"]
CLANG_GEN_CFLAGS = ["-O2", "-fprofile-instr-generate", "-fcoverage-mapping", "-g"]
CLANG_GEN_LDFLAGS = ["-fprofile-instr-generate"]


def gcc_gen_cflags(pgo_dir: Path) -> List[str]:
    return ["-O2", f"-fprofile-generate={pgo_dir}", "-march=native", "-g"]


def gcc_use_cflags(pgo_dir: Path) -> List[str]:
    return [
        "-O3", "-march=native", f"-fprofile-use={pgo_dir}",
        "-flto", "-funroll-loops", "-fprofile-correction",
    ]


def clang_use_cflags(profdata: Path) -> List[str]:
    return ["-O3", f"-fprofile-instr-use={profdata}", "-flto", "-march=native", "-funroll-loops"]


@dataclass
class PgoOutcome:
    state: PgoState
    artifact: BuildArtifact
    stages: List[str] = field(default_factory=list)
    samples_ok: Optional[int] = None


class PgoController:
    def __init__(
        self,
        config: BuildConfig,
        toolchain: ToolchainInfo,
        driver: CompileDriver,
        runner: Runner = run,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.toolchain = toolchain
        self.driver = driver
        self.runner = runner
        self.env = os.environ if env is None else env
        self.state = PgoState.START
        self.stages: List[str] = []
        self.samples_ok: Optional[int] = None

    # =========================
    # STATE MACHINE
    # =========================
    def run(self) -> PgoOutcome:
        if not self.config.pgo_enabled:
            artifact = self._compile("normal")
            self._transition(PgoState.NO_PGO)
            return self._outcome(artifact)

        family = self.toolchain.compiler_family
        log_info(f"PGO path: compiler family = {family.value}")

        if family is CompilerFamily.GCC:
            return self._run_gcc()

        if family is CompilerFamily.LLVM_CLANG:
            if not self.toolchain.has_profile_merge_tool:
                log_warn(f"{self.config.profdata_tool} not found; falling back to -O3 -march=native -flto build (no PGO).")
                return self._fallback("no-pgo-fallback")
            return self._run_clang()

        log_warn("Unknown compiler for PGO; performing aggressive O3 build")
        return self._fallback("fallback-opt")

    def _run_gcc(self) -> PgoOutcome:
        pgo_dir = self.config.pgo_dir
        log_step("Using GCC-style PGO (fprofile-generate / fprofile-use)")
        self._clear_profile_data()

        artifact = self._compile("pgo-gen", gcc_gen_cflags(pgo_dir), [f"-fprofile-generate={pgo_dir}"])
        self._transition(PgoState.INSTRUMENTED)

        self.train(artifact)
        self._transition(PgoState.TRAINED)

        artifact = self._compile("pgo-use", gcc_use_cflags(pgo_dir), LTO_LDFLAGS)
        self._transition(PgoState.OPTIMIZED)
        return self._outcome(artifact)

    def _run_clang(self) -> PgoOutcome:
        log_step("Using Clang/LLVM-style PGO (instr-generate + llvm-profdata)")
        self._clear_profile_data()

        artifact = self._compile("clang-pgo-gen", CLANG_GEN_CFLAGS, CLANG_GEN_LDFLAGS)
        self._transition(PgoState.INSTRUMENTED)

        self.train(artifact)
        self._transition(PgoState.TRAINED)

        try:
            profiles = self.find_raw_profiles()
            self.merge_profiles(profiles)
        except ProfileArtifactMissing as e:
            log_warn(f"{e}; skipping PGO use stage and doing -O3 fallback.")
            return self._fallback("no-pgo-fallback")

        artifact = self._compile("clang-pgo-use", clang_use_cflags(self.config.profdata_file), LTO_LDFLAGS)
        self._transition(PgoState.OPTIMIZED)
        return self._outcome(artifact)

    def _fallback(self, stage: str) -> PgoOutcome:
        artifact = self._compile(stage, FALLBACK_CFLAGS, LTO_LDFLAGS)
        self._transition(PgoState.DEGRADED)
        return self._outcome(artifact)

    def _transition(self, state: PgoState) -> None:
        log_info(f"PGO state: {self.state.value} -> {state.value}")
        self.state = state

    def _compile(self, stage: str, cflags: Sequence[str] = (), ldflags: Sequence[str] = ()) -> BuildArtifact:
        self.stages.append(stage)
        return self.driver.compile(stage, cflags, ldflags)

    def _outcome(self, artifact: BuildArtifact) -> PgoOutcome:
        return PgoOutcome(
            state=self.state,
            artifact=artifact,
            stages=list(self.stages),
            samples_ok=self.samples_ok,
        )

    # =========================
    # TRAINING
    # =========================
    def training_env(self) -> Dict[str, str]:
        env = dict(self.env)
        # %p keeps one raw profile per process instead of overwriting default.profraw
        env["LLVM_PROFILE_FILE"] = str(self.config.pgo_dir / "mujs-%p.profraw")
        return env

    def run_sample(self, sample: int, artifact: BuildArtifact, env: Dict[str, str]) -> None:
        cmd = [str(artifact.path), str(self.config.train_script)]
        result = self.runner(cmd, cwd=self.config.src_dir, env=env)
        if not result.ok:
            raise TrainingRunFailure(sample, result.returncode)

    def train(self, artifact: BuildArtifact) -> int:
        """Run the training workload `samples` times, one after another.

        Returns the number of samples that exited cleanly. Failed samples are
        logged and skipped.
        """
        total = self.config.samples
        if not self.config.train_script.is_file():
            log_warn(f"Training script not found: {self.config.train_script}")

        log_step(f"Running training workload ({total} samples)...")
        self.config.pgo_dir.mkdir(parents=True, exist_ok=True)
        env = self.training_env()
        ok = 0
        for sample in range(1, total + 1):
            log_info(f"pgo sample {sample}/{total}")
            try:
                self.run_sample(sample, artifact, env)
            except TrainingRunFailure as e:
                log_warn(str(e))
                continue
            ok += 1

        if ok == 0:
            log_warn("No training sample completed successfully; the collected profile is likely empty")
        else:
            log_success(f"Training finished: {ok}/{total} samples succeeded")
        self.samples_ok = ok
        return ok

    # =========================
    # PROFILE DATA
    # =========================
    def _clear_profile_data(self) -> None:
        if self.config.pgo_dir.exists():
            shutil.rmtree(self.config.pgo_dir)
        if self.config.src_dir.exists():
            for stale in self.config.src_dir.rglob("*.profraw"):
                stale.unlink()
        self.config.profdata_file.unlink(missing_ok=True)

    def find_raw_profiles(self) -> List[Path]:
        profiles = sorted(self.config.src_dir.rglob("*.profraw")) if self.config.src_dir.exists() else []
        if not profiles:
            raise ProfileArtifactMissing(f"No .profraw found under {self.config.src_dir}")
        log_info(f"Found {len(profiles)} profraw file(s)")
        return profiles

    def merge_profiles(self, profiles: List[Path]) -> Path:
        out = self.config.profdata_file
        cmd = [self.config.profdata_tool, "merge", "-o", str(out)] + [str(p) for p in profiles]
        result = self.runner(cmd)
        if not result.ok:
            raise ProfileArtifactMissing(f"{self.config.profdata_tool} merge failed (exit {result.returncode})")
        log_info(f"Merged profdata -> {out}")
        return out
