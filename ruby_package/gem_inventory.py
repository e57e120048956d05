"""
gem_inventory.py - bundle に含まれる gem の列挙

`bundle exec ruby` に小さな Ruby スクリプトを stdin で渡し、
default グループの解決済み gem を JSON で受け取る。
bundler の出力を解析するのはこのモジュールだけ。

出力形式 (1行の JSON 配列, name 順):
  [{"extensions": true, "name": "nokogiri-1.11.0",
    "path": "/gems/nokogiri-1.11.0",
    "gemspec": "/specifications/nokogiri-1.11.0.gemspec"}, ...]

path / gemspec は GEM_HOME からの相対パス。
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator

from .command_runner import CommandRunner
from .error_messages import (
    DEP_DUPLICATE_GEM,
    DEP_OUTPUT_UNPARSABLE,
    DEP_TOOL_FAILED,
    DependencyResolutionError,
    format_error,
)
from .logging_utils import get_structured_logger

_logger = get_structured_logger("srp.inventory")


# ======================================================================
# 定数
# ======================================================================

GEMFILE_ENV_VAR = "BUNDLE_GEMFILE"
BUNDLE_EXEC_RUBY = ["bundle", "exec", "ruby"]

# bundler 自身はデプロイ対象に含めない
EXCLUDED_GEMS = frozenset({"bundler"})

IDENTIFY_GEMS_SCRIPT = """
require 'json'
root = ENV['GEM_HOME']
gems = Bundler.definition.specs_for([:default]).reject{|s| s.name=='bundler'}
details = gems.map{|gem|
  {
    extensions: !!gem.extensions.any?,
    name: gem.full_name,
    path: gem.full_gem_path.split(root).last,
    gemspec: gem.loaded_from.split(root).last,
  }
}
puts JSON.generate(details.sort_by{|x| x[:name]})
"""

INVENTORY_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "array",
    "items": {
        "type": "object",
        "required": ["extensions", "name", "path", "gemspec"],
        "properties": {
            "extensions": {"type": "boolean"},
            "name": {"type": "string", "minLength": 1},
            "path": {"type": "string", "minLength": 1},
            "gemspec": {"type": "string", "minLength": 1},
        },
    },
}


# ======================================================================
# GemSpec
# ======================================================================

@dataclass(frozen=True)
class GemSpec:
    """解決済み gem 1件"""
    name: str
    install_path: str
    manifest_rel_path: str
    has_native_extensions: bool = False

    @property
    def base_name(self) -> str:
        """バージョンを除いた gem 名 (nokogiri-1.11.0 → nokogiri)"""
        head, sep, tail = self.name.rpartition("-")
        if sep and tail[:1].isdigit():
            return head
        return self.name

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GemSpec":
        return cls(
            name=data["name"],
            install_path=data["path"],
            manifest_rel_path=data["gemspec"],
            has_native_extensions=bool(data["extensions"]),
        )


# ======================================================================
# 解析
# ======================================================================

def parse_inventory(output: str) -> List[GemSpec]:
    """
    bundler の stdout を GemSpec のリストに変換する。

    Raises:
        DependencyResolutionError: JSON として解析できない、
            スキーマに合わない、または gem 名が重複している場合
    """
    # Gemfile 読み込み時の警告等が前に混ざることがあるため最終行を使う
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if not lines:
        raise format_error(
            DEP_OUTPUT_UNPARSABLE,
            DependencyResolutionError,
            reason="no output",
        )

    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError as e:
        raise format_error(
            DEP_OUTPUT_UNPARSABLE,
            DependencyResolutionError,
            reason=str(e),
            details={"stdout": output},
        ) from e

    errors = [
        error.message
        for error in Draft7Validator(INVENTORY_SCHEMA).iter_errors(data)
    ]
    if errors:
        raise format_error(
            DEP_OUTPUT_UNPARSABLE,
            DependencyResolutionError,
            reason="; ".join(errors),
            details={"stdout": output},
        )

    gems: Dict[str, GemSpec] = {}
    for item in data:
        gem = GemSpec.from_dict(item)
        if gem.base_name in EXCLUDED_GEMS:
            continue
        if gem.name in gems:
            raise format_error(DEP_DUPLICATE_GEM, DependencyResolutionError, name=gem.name)
        gems[gem.name] = gem

    return [gems[name] for name in sorted(gems)]


# ======================================================================
# 収集
# ======================================================================

def collect(
    manifest_path: str,
    env: Optional[Mapping[str, str]] = None,
    runner: Optional[CommandRunner] = None,
) -> List[GemSpec]:
    """
    manifest_path (Gemfile) の default グループの gem を列挙する。

    BUNDLE_GEMFILE は env (省略時 os.environ) より優先して注入する。
    外部プロセスの終了までブロックする。

    Raises:
        DependencyResolutionError: bundler が非0で終了した、
            または出力を解析できない場合
    """
    runner = runner or CommandRunner()
    bundle_env = dict(os.environ if env is None else env)
    bundle_env[GEMFILE_ENV_VAR] = manifest_path

    result = runner.run(BUNDLE_EXEC_RUBY, input=IDENTIFY_GEMS_SCRIPT, env=bundle_env)
    if not result.ok:
        raise format_error(
            DEP_TOOL_FAILED,
            DependencyResolutionError,
            returncode=result.returncode,
            gemfile=manifest_path,
            details={"stderr": result.output},
        )

    gems = parse_inventory(result.stdout)
    _logger.debug("Resolved bundle", gemfile=manifest_path, gem_count=len(gems))
    return gems
