"""
packager.py - serverless の package フックから呼ばれるパッケージング実行

処理順:
  1. 未対応 provider / runtime の警告
  2. RuntimeProfile の解決
  3. bundler で gem 一覧を取得 (失敗したら何も反映せず中断)
  4. alwaysCrossCompileExtensions なら ビルドコンテナで bundle install
  5. include/exclude 規則を生成し、package に反映

規則を package に反映するのは全段階が成功した後だけ。
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import yaml

from .command_runner import CommandRunner
from .config import PackagingConfig
from .error_messages import CFG_SERVICE_UNREADABLE, ConfigurationError, format_error
from .gem_inventory import GemSpec, collect
from .include_manifest import EXCLUDE_ALL, GlobRule, build_rules, render_rules
from .logging_utils import RunContext, get_structured_logger
from .native_bundler import NativeBundler, SandboxConfig, sandbox_config_for
from .runtime_profiles import PROFILES, RuntimeProfile, is_supported_runtime, resolve

_logger = get_structured_logger("srp.packager")


# ======================================================================
# 定数
# ======================================================================

SUPPORTED_PROVIDER = "aws"
SERVICE_FILE = "serverless.yml"
CUSTOM_SECTION = "rubyPackage"

# これ未満なら gem 名を列挙してログに出す
GEM_LIST_LOG_LIMIT = 10


# ======================================================================
# ホスト側 (serverless) の表現
# ======================================================================

@dataclass
class PackageSurface:
    """serverless.yml の package セクション"""
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    exclude_dev_dependencies: bool = True

    def apply(self, rules: List[GlobRule]) -> None:
        """
        規則を include に反映する。

        include は先頭から評価され後勝ちなので、全除外 (!**) だけは
        serverless.yml に書かれた既存の include より前に置く。
        """
        # excludeDevDependencies は node_modules 向けなので常に無効化
        self.exclude_dev_dependencies = False

        leading = [r for r in rules[:1] if r == GlobRule.exclude(EXCLUDE_ALL)]
        rest = rules[len(leading):]
        self.include = render_rules(leading) + self.include + render_rules(rest)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "include": list(self.include),
            "exclude": list(self.exclude),
            "excludeDevDependencies": self.exclude_dev_dependencies,
        }


@dataclass
class ServiceDefinition:
    """serverless サービスのうちパッケージングに必要な部分"""
    service_path: str
    provider_name: Optional[str] = SUPPORTED_PROVIDER
    runtime: Optional[str] = None
    custom_options: Dict[str, Any] = field(default_factory=dict)
    package: PackageSurface = field(default_factory=PackageSurface)


def _section(
    parent: Dict[str, Any], key: str, path: str, label: Optional[str] = None
) -> Dict[str, Any]:
    """省略・空なら {}、mapping 以外なら ConfigurationError"""
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise format_error(
            CFG_SERVICE_UNREADABLE,
            ConfigurationError,
            path=path,
            reason=f"{label or key} is not a mapping",
        )
    return dict(value)


def load_service_definition(path: str) -> ServiceDefinition:
    """
    serverless.yml を読み込む。

    path にディレクトリを渡した場合はその直下の serverless.yml を読む。

    Raises:
        ConfigurationError: ファイルが読めない、YAML として不正、
            またはセクションが mapping でない場合
    """
    if os.path.isdir(path):
        path = os.path.join(path, SERVICE_FILE)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise format_error(
            CFG_SERVICE_UNREADABLE, ConfigurationError, path=path, reason=e
        ) from e

    if not isinstance(data, dict):
        raise format_error(
            CFG_SERVICE_UNREADABLE,
            ConfigurationError,
            path=path,
            reason="top level is not a mapping",
        )

    provider = _section(data, "provider", path)
    custom = _section(data, "custom", path)
    package = _section(data, "package", path)
    options = _section(custom, CUSTOM_SECTION, path, label="custom.rubyPackage")

    return ServiceDefinition(
        service_path=os.path.dirname(os.path.abspath(path)),
        provider_name=provider.get("name"),
        runtime=provider.get("runtime"),
        custom_options=options,
        package=PackageSurface(
            include=list(package.get("include") or []),
            exclude=list(package.get("exclude") or []),
            exclude_dev_dependencies=package.get("excludeDevDependencies", True),
        ),
    )


# ======================================================================
# RubyPackager
# ======================================================================

class RubyPackager:
    """
    1サービス分のパッケージング実行。

    同一ホストで並行実行する場合は containerName を実行ごとに変えること。
    """

    def __init__(
        self,
        service: ServiceDefinition,
        config: Optional[PackagingConfig] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.service = service
        self.config = config or PackagingConfig.from_sources(
            service.service_path, service.custom_options
        )
        self.runner = runner or CommandRunner()
        self._profile: Optional[RuntimeProfile] = None
        self._sandbox_config: Optional[SandboxConfig] = None

        self.hooks: Dict[str, Callable[[], List[GlobRule]]] = {
            "before:package:createDeploymentArtifacts": self.before_package,
            "before:package:function:package": self.before_package,
        }

    @property
    def profile(self) -> RuntimeProfile:
        if self._profile is None:
            self._profile = resolve(self.service.runtime)
        return self._profile

    @property
    def sandbox_config(self) -> SandboxConfig:
        """初回アクセス時に作成し、この実行中はキャッシュする"""
        if self._sandbox_config is None:
            self._sandbox_config = sandbox_config_for(self.config, self.profile)
        return self._sandbox_config

    # ------------------------------------------------------------------
    # フック
    # ------------------------------------------------------------------

    def before_package(self, run_id: Optional[str] = None) -> List[GlobRule]:
        """
        パッケージングを実行し、生成した規則を package.include に追加する。

        Returns:
            生成した規則の列

        Raises:
            PackagingError のサブクラス: いずれの場合も package は変更されない
        """
        with RunContext(run_id):
            self.warn_on_unsupported_runtime()
            profile = self.profile

            gems = collect(self.config.gemfile_path, runner=self.runner)

            # TODO: gem にネイティブ拡張がない場合のビルド省略は、
            #       .bundle/config の生成をビルドから分離してから行う
            if self.config.always_cross_compile_extensions:
                self.native_linux_bundle()

            self._log_gems(gems)

            if self.config.debug:
                mode = "standalone" if self.config.standalone else "bundler/setup"
                _logger.info(f"Compiling bundle in {mode} mode")

            rules = build_rules(profile, gems, self.config)
            self.service.package.apply(rules)

            if self.config.debug:
                _logger.info("Filepaths whitelisted in the packaging")
                for pattern in self.service.package.include:
                    _logger.info(f"--- {pattern}")

            return rules

    def native_linux_bundle(self) -> None:
        NativeBundler(
            service_path=self.service.service_path,
            config=self.config,
            sandbox=self.sandbox_config,
            runner=self.runner,
        ).build()

    # ------------------------------------------------------------------
    # ログ
    # ------------------------------------------------------------------

    @staticmethod
    def _log_gems(gems: List[GemSpec]) -> None:
        if len(gems) < GEM_LIST_LOG_LIMIT:
            _logger.info("Packaging gems: " + " ".join(g.name for g in gems))
        else:
            _logger.info(f"Packaging {len(gems)} gems")

    def warn_on_unsupported_runtime(self) -> None:
        provider = self.service.provider_name
        runtime = self.service.runtime

        if self.config.debug:
            _logger.info(f"platform: {sys.platform}")
            _logger.info(f"provider: {provider}")
            _logger.info(f"runtime: {runtime}")

        if provider != SUPPORTED_PROVIDER:
            _logger.warning(
                f"serverless-ruby-package has only been tested with the AWS provider. "
                f"It may not work with {provider}, but bug reports are welcome."
            )
            return

        if not is_supported_runtime(runtime):
            tested = " and the ".join(sorted(PROFILES))
            _logger.warning(
                f"serverless-ruby-package has only been tested with the {tested} runtimes. "
                f"It may not work with {runtime}, but bug reports are welcome."
            )
