"""
config.py - パッケージング設定のスナップショット

実行開始時に一度だけ組み立て、以後は変更しない。
優先順位 (後勝ち):
  1. デフォルト値
  2. serverless.yml の custom.rubyPackage
  3. 環境変数 CROSS_COMPILE_EXTENSIONS (alwaysCrossCompileExtensions のみ)

環境変数を読むのは from_sources() だけ。各コンポーネントは
PackagingConfig を引数で受け取り、os.environ を直接参照しない。
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Union

from jsonschema import Draft7Validator

from .error_messages import CFG_INVALID, ConfigurationError, format_error
from .logging_utils import get_structured_logger

_logger = get_structured_logger("srp.config")


# ======================================================================
# 定数
# ======================================================================

CROSS_COMPILE_ENV_VAR = "CROSS_COMPILE_EXTENSIONS"
DEBUG_ENV_VAR = "SRP_DEBUG"

_TRUTHY_PATTERN = re.compile(r"^(?:y|yes|true|1|on)$", re.IGNORECASE)

DEFAULT_CONTAINER_NAME = "serverless-ruby-package.packaged-gems"
DEFAULT_CONTAINER_PATH = "/var/task"
DEFAULT_WITHOUT_GROUPS = "test development deploy"

# custom.rubyPackage のキー → PackagingConfig フィールド
OPTION_FIELDS: Dict[str, str] = {
    "alwaysCrossCompileExtensions": "always_cross_compile_extensions",
    "debug": "debug",
    "gemfilePath": "gemfile_path",
    "manifestPath": "gemfile_path",
    "containerName": "container_name",
    "sandboxInstanceName": "container_name",
    "containerPath": "container_path",
    "mountPath": "container_path",
    "withoutGroups": "without_groups",
    "withGroups": "with_groups",
    "standalone": "standalone",
    "dockerImage": "docker_image",
    "sandboxImage": "docker_image",
    "excludeGemTests": "exclude_gem_tests",
}

# 文字列、または無効化を表す false のみ (true は不可)
_STRING_OR_FALSE = {"anyOf": [{"type": "string"}, {"type": "boolean", "const": False}]}

OPTIONS_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "alwaysCrossCompileExtensions": {"type": "boolean"},
        "debug": {"type": "boolean"},
        "gemfilePath": {"type": "string", "minLength": 1},
        "manifestPath": {"type": "string", "minLength": 1},
        "containerName": {"type": "string", "pattern": r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$"},
        "sandboxInstanceName": {"type": "string", "pattern": r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$"},
        "containerPath": {"type": "string", "pattern": "^/"},
        "mountPath": {"type": "string", "pattern": "^/"},
        "withoutGroups": _STRING_OR_FALSE,
        "withGroups": _STRING_OR_FALSE,
        "standalone": {"type": "boolean"},
        "dockerImage": _STRING_OR_FALSE,
        "sandboxImage": _STRING_OR_FALSE,
        "excludeGemTests": {"type": "boolean"},
    },
}


def parse_env_flag(value: str) -> bool:
    """y / yes / true / 1 / on (大文字小文字無視) のみ True"""
    return bool(_TRUTHY_PATTERN.match(value.strip()))


def validate_options(options: Mapping[str, Any]) -> List[str]:
    """custom.rubyPackage を検証してエラーメッセージのリストを返す"""
    validator = Draft7Validator(OPTIONS_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(dict(options)), key=lambda e: list(e.path)):
        path = "/".join(str(p) for p in error.absolute_path)
        if path:
            errors.append(f"[{path}] {error.message}")
        else:
            errors.append(error.message)
    return errors


# ======================================================================
# PackagingConfig
# ======================================================================

@dataclass(frozen=True)
class PackagingConfig:
    """1回のパッケージング実行で使う設定 (不変)"""
    gemfile_path: str
    always_cross_compile_extensions: bool = True
    debug: bool = False
    container_name: str = DEFAULT_CONTAINER_NAME
    container_path: str = DEFAULT_CONTAINER_PATH
    without_groups: Union[str, bool] = DEFAULT_WITHOUT_GROUPS
    with_groups: Union[str, bool] = False
    standalone: bool = False
    docker_image: Union[str, bool] = False
    exclude_gem_tests: bool = True

    @property
    def lockfile_path(self) -> str:
        return f"{self.gemfile_path}.lock"

    @classmethod
    def from_sources(
        cls,
        service_path: str,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "PackagingConfig":
        """
        デフォルト → overrides → 環境変数 の順に合成してスナップショットを作る。

        Args:
            service_path: serverless サービスのルート (Gemfile の既定位置)
            overrides: custom.rubyPackage の内容
            environ: 環境変数 (省略時 os.environ)

        Raises:
            ConfigurationError: overrides の型やキーが不正な場合
        """
        if environ is None:
            environ = os.environ
        overrides = dict(overrides or {})

        errors = validate_options(overrides)
        if errors:
            raise format_error(
                CFG_INVALID,
                ConfigurationError,
                reason="; ".join(errors),
                details={"errors": errors},
            )

        config = cls(
            gemfile_path=os.path.join(service_path, "Gemfile"),
            debug=bool(environ.get(DEBUG_ENV_VAR)),
        )

        values: Dict[str, Any] = {}
        for key, value in overrides.items():
            field_name = OPTION_FIELDS.get(key)
            if field_name is None:
                _logger.warning("Ignoring unknown custom.rubyPackage option", option=key)
                continue
            values[field_name] = value

        gemfile = values.get("gemfile_path")
        if gemfile and not os.path.isabs(gemfile):
            values["gemfile_path"] = os.path.join(service_path, gemfile)

        config = replace(config, **values)

        # 環境変数を優先
        if CROSS_COMPILE_ENV_VAR in environ:
            config = replace(
                config,
                always_cross_compile_extensions=parse_env_flag(environ[CROSS_COMPILE_ENV_VAR]),
            )

        return config

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
