"""
runtime_profiles.py - Lambda Ruby ランタイムのディスク配置規約

provider.runtime から以下を引く純粋なルックアップ:
- RbConfig::CONFIG['ruby_version'] 相当の gem ディレクトリ名
- Gem.extension_api_version 相当のネイティブ拡張ディレクトリ名
- ネイティブ拡張のビルドに使う docker イメージ

I/O なし。未知の runtime はデフォルト (ruby2.7) にフォールバックし、
警告ログのみ出す。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional

from .logging_utils import get_structured_logger

_logger = get_structured_logger("srp.runtime")


# ======================================================================
# 定数
# ======================================================================

BUNDLE_ROOT = "vendor/bundle"
RUBY_ENGINE = "ruby"
EXTENSION_PLATFORM = "x86_64-linux"

DEFAULT_RUNTIME = "ruby2.7"


# ======================================================================
# RuntimeProfile
# ======================================================================

@dataclass(frozen=True)
class RuntimeProfile:
    """ランタイムごとのディスク配置規約"""
    runtime_id: str
    package_version: str
    extension_api_version: str
    sandbox_image: str

    @property
    def dependency_root(self) -> str:
        """gem 本体と gemspec の置き場所 (vendor/bundle/ruby/2.7.0)"""
        return f"{BUNDLE_ROOT}/{RUBY_ENGINE}/{self.package_version}"

    @property
    def extension_root(self) -> str:
        """コンパイル済み拡張の置き場所"""
        return (
            f"{BUNDLE_ROOT}/{RUBY_ENGINE}/extensions/"
            f"{EXTENSION_PLATFORM}/{self.extension_api_version}"
        )


PROFILES: Dict[str, RuntimeProfile] = {
    "ruby2.5": RuntimeProfile(
        runtime_id="ruby2.5",
        package_version="2.5.0",
        extension_api_version="2.5.0-static",
        sandbox_image="lambci/lambda:build-ruby2.5",
    ),
    "ruby2.7": RuntimeProfile(
        runtime_id="ruby2.7",
        package_version="2.7.0",
        extension_api_version="2.7.0",
        sandbox_image="lambci/lambda:build-ruby2.7",
    ),
}


def is_supported_runtime(runtime_id: Optional[str]) -> bool:
    return runtime_id in PROFILES


def resolve(runtime_id: Optional[str]) -> RuntimeProfile:
    """
    runtime_id に対応する RuntimeProfile を返す。

    未知の runtime_id でも例外は出さず、デフォルトプロファイルの
    配置規約を runtime_id だけ差し替えて返す。
    """
    profile = PROFILES.get(runtime_id or "")
    if profile is not None:
        return profile

    _logger.warning(
        f"Unknown runtime, using the {DEFAULT_RUNTIME} layout",
        runtime=runtime_id,
    )
    return replace(PROFILES[DEFAULT_RUNTIME], runtime_id=runtime_id or DEFAULT_RUNTIME)
