"""
native_bundler.py - Lambda 互換コンテナでの gem ビルド

ホストの OS/アーキテクチャに関係なく x86_64-linux 向けの
ネイティブ拡張を得るため、lambci のビルドイメージで bundle install する。

状態遷移 (一方向):
  IDLE → PROVISIONED → SOURCES_STAGED → CONFIGURED → INSTALLED
       → ARTIFACTS_RETRIEVED → TORN_DOWN
  途中で失敗した場合: → FAILED → TORN_DOWN

コンテナの破棄は SandboxInstance.__exit__ で必ず実行する。
create 自体が失敗した場合は破棄対象がないので __exit__ は呼ばれない。
破棄の失敗はログに残すだけで、先行する例外を置き換えない。

同名コンテナを使う並行ビルドは衝突する。containerName を
ビルドごとに変えるか、呼び出し側で直列化すること。
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Any, List, Optional

from .command_runner import CommandResult, CommandRunner
from .config import PackagingConfig
from .docker_commands import SandboxCommands
from .error_messages import (
    SBX_INSTALL_FAILED,
    SBX_PROVISION_FAILED,
    SBX_STEP_FAILED,
    SBX_TEARDOWN_FAILED,
    SandboxInstallError,
    SandboxProvisionError,
    SandboxStepError,
    SandboxTeardownError,
    format_error,
)
from .logging_utils import get_structured_logger
from .runtime_profiles import BUNDLE_ROOT, RuntimeProfile

_logger = get_structured_logger("srp.native")


# ======================================================================
# 定数
# ======================================================================

VENDOR_DIR = "vendor"
BUNDLE_CONFIG_DIR = ".bundle"
CONTAINER_GEMFILE = "Gemfile"
CONTAINER_LOCKFILE = "Gemfile.lock"


class BuildState(enum.Enum):
    IDLE = "idle"
    PROVISIONED = "provisioned"
    SOURCES_STAGED = "sources_staged"
    CONFIGURED = "configured"
    INSTALLED = "installed"
    ARTIFACTS_RETRIEVED = "artifacts_retrieved"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class SandboxConfig:
    """ビルドコンテナの設定"""
    container_name: str
    mount_path: str
    image: str


def sandbox_config_for(config: PackagingConfig, profile: RuntimeProfile) -> SandboxConfig:
    """dockerImage 未指定ならランタイムに対応するビルドイメージを使う"""
    return SandboxConfig(
        container_name=config.container_name,
        mount_path=config.container_path,
        image=config.docker_image or profile.sandbox_image,
    )


# ======================================================================
# SandboxInstance
# ======================================================================

class SandboxInstance:
    """
    `with` で囲んだ範囲だけ存在する名前付きビルドコンテナ。

    Usage:
        with SandboxInstance(runner, commands) as sandbox:
            sandbox.run_step("stage Gemfile", commands.copy_in(...))
    """

    def __init__(self, runner: CommandRunner, commands: SandboxCommands) -> None:
        self._runner = runner
        self.commands = commands
        self.teardown_error: Optional[SandboxTeardownError] = None

    def __enter__(self) -> "SandboxInstance":
        result = self._runner.run(self.commands.create())
        if not result.ok:
            raise format_error(
                SBX_PROVISION_FAILED,
                SandboxProvisionError,
                name=self.commands.name,
                image=self.commands.image,
                details={"stderr": result.output},
            )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        result = self._runner.run(self.commands.remove())
        if not result.ok:
            self.teardown_error = format_error(
                SBX_TEARDOWN_FAILED,
                SandboxTeardownError,
                name=self.commands.name,
                details={"stderr": result.output},
            )
            _logger.warning(str(self.teardown_error), stderr=result.output)
        return False

    def run_step(self, step: str, argv: List[str]) -> CommandResult:
        result = self._runner.run(argv)
        if not result.ok:
            raise format_error(
                SBX_STEP_FAILED,
                SandboxStepError,
                step=step,
                name=self.commands.name,
                details={"stderr": result.output, "argv": argv},
            )
        return result


# ======================================================================
# NativeBundler 本体
# ======================================================================

class NativeBundler:
    """ビルドコンテナ内で bundle install し、vendor/ をホストへ戻す"""

    def __init__(
        self,
        service_path: str,
        config: PackagingConfig,
        sandbox: SandboxConfig,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.service_path = service_path
        self.config = config
        self.sandbox = sandbox
        self.runner = runner or CommandRunner()
        self.commands = SandboxCommands(
            name=sandbox.container_name,
            mount_path=sandbox.mount_path,
            image=sandbox.image,
        )
        self.state = BuildState.IDLE
        self.history: List[BuildState] = [BuildState.IDLE]

    def _transition(self, state: BuildState) -> None:
        self.state = state
        self.history.append(state)

    def build(self) -> None:
        """
        ビルド全体を実行する。どの段階で失敗してもコンテナは破棄される。

        Raises:
            SandboxProvisionError: コンテナを作成できない
            SandboxStepError: 転送 / 設定 / 回収のいずれかが失敗
            SandboxInstallError: bundle install が失敗
        """
        _logger.info("Building gems with native extensions for linux")
        if self.config.debug:
            _logger.info(
                "Build container",
                container=self.sandbox.container_name,
                image=self.sandbox.image,
            )

        instance = SandboxInstance(self.runner, self.commands)
        provisioned = False
        try:
            with instance:
                provisioned = True
                self._transition(BuildState.PROVISIONED)
                self._stage_sources(instance)
                self._transition(BuildState.SOURCES_STAGED)
                self._configure_bundle(instance)
                self._transition(BuildState.CONFIGURED)
                self._install(instance)
                self._transition(BuildState.INSTALLED)
                self._retrieve_artifacts(instance)
                self._transition(BuildState.ARTIFACTS_RETRIEVED)
        except Exception:
            self._transition(BuildState.FAILED)
            raise
        finally:
            # create が失敗した場合は破棄するものがない
            if provisioned:
                self._transition(BuildState.TORN_DOWN)

    # ------------------------------------------------------------------
    # 各段階
    # ------------------------------------------------------------------

    def _stage_sources(self, instance: SandboxInstance) -> None:
        """既存の vendor/ と Gemfile / Gemfile.lock だけを転送する"""
        local_vendor = os.path.join(self.service_path, VENDOR_DIR)
        if os.path.isdir(local_vendor):
            instance.run_step("copy vendor", self.commands.copy_in(local_vendor, VENDOR_DIR))

        # コンテナ内では常に Gemfile / Gemfile.lock という名前で置く
        instance.run_step(
            "copy Gemfile",
            self.commands.copy_in(self.config.gemfile_path, CONTAINER_GEMFILE),
        )
        instance.run_step(
            "copy Gemfile.lock",
            self.commands.copy_in(self.config.lockfile_path, CONTAINER_LOCKFILE),
        )

    def bundle_settings(self) -> List[List[str]]:
        """bundle config set --local に渡す (key, value) の列"""
        settings = [
            ["path", BUNDLE_ROOT],
            ["deployment", "true"],
            ["frozen", "true"],
            ["clean", "true"],
        ]
        if self.config.with_groups:
            settings.append(["with", str(self.config.with_groups)])
        if self.config.without_groups:
            settings.append(["without", str(self.config.without_groups)])
        if self.config.standalone:
            settings.append(["standalone", "true"])
        return settings

    def _configure_bundle(self, instance: SandboxInstance) -> None:
        for key, value in self.bundle_settings():
            instance.run_step(f"bundle config {key}", self.commands.bundle_config(key, value))

    def _install(self, instance: SandboxInstance) -> None:
        result = self.runner.run(self.commands.run(["bundle", "install"]))
        if not result.ok:
            raise format_error(
                SBX_INSTALL_FAILED,
                SandboxInstallError,
                name=self.commands.name,
                details={"output": result.output},
            )
        if self.config.debug:
            _logger.info(result.stdout.strip())

    def _retrieve_artifacts(self, instance: SandboxInstance) -> None:
        instance.run_step("copy back vendor", self.commands.copy_out(VENDOR_DIR, self.service_path))

        # Bundler.setup モードでは .bundle/config も実行時に必要
        if not self.config.standalone:
            instance.run_step(
                "copy back .bundle",
                self.commands.copy_out(BUNDLE_CONFIG_DIR, self.service_path),
            )
