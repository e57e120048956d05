"""
test_native_bundler.py - ビルドコンテナ状態遷移のテスト

テスト観点:
- 正常系のコマンド順序と状態履歴
- vendor/ がある場合だけ転送
- bundle config の内容 (with / without / standalone)
- どの段階で失敗してもコンテナは破棄される
- create 失敗時は rm しない
- rm 失敗は先行エラーを隠さず、成功した実行も止めない
"""

from __future__ import annotations

import logging

import pytest

from ruby_package.config import PackagingConfig
from ruby_package.error_messages import (
    SandboxInstallError,
    SandboxProvisionError,
    SandboxStepError,
)
from ruby_package.native_bundler import (
    BuildState,
    NativeBundler,
    SandboxConfig,
    sandbox_config_for,
)
from ruby_package.runtime_profiles import resolve

NAME = "srp.test-gems"


@pytest.fixture
def service_dir(tmp_path):
    (tmp_path / "Gemfile").write_text("source 'https://rubygems.org'\ngem 'nokogiri'\n")
    (tmp_path / "Gemfile.lock").write_text("GEM\n")
    return tmp_path


def _bundler(service_dir, runner, **overrides) -> NativeBundler:
    config = PackagingConfig(gemfile_path=str(service_dir / "Gemfile"), container_name=NAME, **overrides)
    sandbox = sandbox_config_for(config, resolve("ruby2.7"))
    return NativeBundler(str(service_dir), config, sandbox, runner=runner)


class TestSandboxConfig:
    def test_image_from_profile(self) -> None:
        config = PackagingConfig(gemfile_path="Gemfile")
        assert sandbox_config_for(config, resolve("ruby2.5")) == SandboxConfig(
            container_name="serverless-ruby-package.packaged-gems",
            mount_path="/var/task",
            image="lambci/lambda:build-ruby2.5",
        )

    def test_configured_image_wins(self) -> None:
        config = PackagingConfig(gemfile_path="Gemfile", docker_image="my/ruby-builder:1")
        assert sandbox_config_for(config, resolve("ruby2.7")).image == "my/ruby-builder:1"


class TestHappyPath:
    def test_state_history(self, service_dir, runner) -> None:
        bundler = _bundler(service_dir, runner)
        bundler.build()
        assert bundler.history == [
            BuildState.IDLE,
            BuildState.PROVISIONED,
            BuildState.SOURCES_STAGED,
            BuildState.CONFIGURED,
            BuildState.INSTALLED,
            BuildState.ARTIFACTS_RETRIEVED,
            BuildState.TORN_DOWN,
        ]
        assert bundler.state is BuildState.TORN_DOWN

    def test_command_sequence(self, service_dir, runner) -> None:
        _bundler(service_dir, runner).build()
        argvs = runner.argvs

        assert argvs[0][:2] == ["docker", "create"]
        assert argvs[-1] == ["docker", "rm", NAME]
        assert runner.index_of("docker", "cp", str(service_dir / "Gemfile"), f"{NAME}:/var/task/Gemfile") < \
            runner.index_of("bundle", "install")
        assert runner.index_of("--local", "clean", "true") < runner.index_of("bundle", "install")
        assert runner.index_of("bundle", "install") < \
            runner.index_of("docker", "cp", f"{NAME}:/var/task/vendor", str(service_dir))

    def test_lockfile_renamed_in_container(self, tmp_path, runner) -> None:
        gemfile = tmp_path / "gems.rb"
        config = PackagingConfig(gemfile_path=str(gemfile), container_name=NAME)
        sandbox = sandbox_config_for(config, resolve("ruby2.7"))
        NativeBundler(str(tmp_path), config, sandbox, runner=runner).build()

        assert runner.called("docker", "cp", str(gemfile), f"{NAME}:/var/task/Gemfile")
        assert runner.called("docker", "cp", f"{gemfile}.lock", f"{NAME}:/var/task/Gemfile.lock")

    def test_vendor_copied_only_when_present(self, service_dir, runner) -> None:
        _bundler(service_dir, runner).build()
        assert not runner.called("docker", "cp", str(service_dir / "vendor"))

        (service_dir / "vendor").mkdir()
        runner.calls.clear()
        _bundler(service_dir, runner).build()
        assert runner.called("docker", "cp", str(service_dir / "vendor"), f"{NAME}:/var/task/vendor")

    def test_bundle_config_defaults(self, service_dir, runner) -> None:
        _bundler(service_dir, runner).build()
        for key, value in (
            ("path", "vendor/bundle"),
            ("deployment", "true"),
            ("frozen", "true"),
            ("clean", "true"),
            ("without", "test development deploy"),
        ):
            assert runner.called("bundle", "config", "set", "--local", key, value)
        assert not runner.called("--local", "with")
        assert not runner.called("--local", "standalone")

    def test_bundle_config_optional_settings(self, service_dir, runner) -> None:
        _bundler(
            service_dir, runner, with_groups="jobs", without_groups=False, standalone=True
        ).build()
        assert runner.called("--local", "with", "jobs")
        assert runner.called("--local", "standalone", "true")
        assert not runner.called("--local", "without")

    def test_bundle_dir_retrieved_unless_standalone(self, service_dir, runner) -> None:
        _bundler(service_dir, runner).build()
        assert runner.called("docker", "cp", f"{NAME}:/var/task/.bundle", str(service_dir))

        runner.calls.clear()
        _bundler(service_dir, runner, standalone=True).build()
        assert not runner.called(f"{NAME}:/var/task/.bundle")

    def test_install_output_logged_in_debug(self, service_dir, runner, caplog) -> None:
        runner.on("bundle", "install", stdout="Bundle complete! 3 Gemfile dependencies\n")
        with caplog.at_level(logging.INFO, logger="srp"):
            _bundler(service_dir, runner, debug=True).build()
        assert any("Bundle complete!" in r.getMessage() for r in caplog.records)


class TestFailures:
    def test_provision_failure_skips_teardown(self, service_dir, runner) -> None:
        runner.on("docker", "create", returncode=1, stderr="Conflict. The container name is already in use")
        bundler = _bundler(service_dir, runner)

        with pytest.raises(SandboxProvisionError) as exc_info:
            bundler.build()

        assert "already in use" in exc_info.value.details["stderr"]
        assert not runner.called("docker", "rm")
        assert bundler.history == [BuildState.IDLE, BuildState.FAILED]

    def test_install_failure_tears_down(self, service_dir, runner) -> None:
        runner.on("bundle", "install", returncode=5, stderr="Gem::Ext::BuildError")
        bundler = _bundler(service_dir, runner)

        with pytest.raises(SandboxInstallError) as exc_info:
            bundler.build()

        assert exc_info.value.details == {"output": "Gem::Ext::BuildError"}
        assert runner.argvs[-1] == ["docker", "rm", NAME]
        assert not runner.called("docker", "cp", f"{NAME}:/var/task/vendor")
        assert bundler.history[-3:] == [BuildState.CONFIGURED, BuildState.FAILED, BuildState.TORN_DOWN]

    @pytest.mark.parametrize(
        "tokens",
        [
            (f"{NAME}:/var/task/Gemfile.lock",),
            ("--local", "frozen"),
            (f"{NAME}:/var/task/.bundle",),
        ],
    )
    def test_step_failure_tears_down(self, service_dir, runner, tokens) -> None:
        runner.on(*tokens, returncode=1, stderr="boom")
        bundler = _bundler(service_dir, runner)

        with pytest.raises(SandboxStepError):
            bundler.build()

        assert runner.argvs[-1] == ["docker", "rm", NAME]
        assert bundler.state is BuildState.TORN_DOWN
        assert BuildState.FAILED in bundler.history

    def test_teardown_failure_does_not_mask_install_error(self, service_dir, runner) -> None:
        runner.on("bundle", "install", returncode=1, stderr="install failed")
        runner.on("docker", "rm", returncode=1, stderr="No such container")

        with pytest.raises(SandboxInstallError):
            _bundler(service_dir, runner).build()

    def test_teardown_failure_after_success_is_only_logged(self, service_dir, runner, caplog) -> None:
        runner.on("docker", "rm", returncode=1, stderr="No such container")
        bundler = _bundler(service_dir, runner)

        with caplog.at_level(logging.WARNING, logger="srp"):
            bundler.build()

        assert bundler.state is BuildState.TORN_DOWN
        assert any("SRP-SBX-004" in r.getMessage() for r in caplog.records)
