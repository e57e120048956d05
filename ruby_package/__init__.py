"""
ruby_package

serverless の Ruby 関数向けに、最小限で実行可能な gem 一式を
パッケージへ含めるための include 規則生成とネイティブ拡張ビルド。
"""

from .config import PackagingConfig
from .error_messages import (
    ConfigurationError,
    DependencyResolutionError,
    PackagingError,
    SandboxError,
    SandboxInstallError,
    SandboxProvisionError,
    SandboxStepError,
    SandboxTeardownError,
)
from .gem_inventory import GemSpec, collect
from .include_manifest import GlobRule, build_rules, render_rules
from .native_bundler import BuildState, NativeBundler, SandboxConfig
from .packager import PackageSurface, RubyPackager, ServiceDefinition, load_service_definition
from .runtime_profiles import RuntimeProfile, resolve

__all__ = [
    "PackagingConfig",
    "ConfigurationError",
    "DependencyResolutionError",
    "PackagingError",
    "SandboxError",
    "SandboxInstallError",
    "SandboxProvisionError",
    "SandboxStepError",
    "SandboxTeardownError",
    "GemSpec",
    "collect",
    "GlobRule",
    "build_rules",
    "render_rules",
    "BuildState",
    "NativeBundler",
    "SandboxConfig",
    "PackageSurface",
    "RubyPackager",
    "ServiceDefinition",
    "load_service_definition",
    "RuntimeProfile",
    "resolve",
]

__version__ = "0.4.0"
