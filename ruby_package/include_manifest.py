"""
include_manifest.py - package.include に渡すグロブ規則の生成

serverless の include は出現順に評価され、最後にマッチした規則が勝つ。
"!" で始まる規則は除外として扱われるが、並び順は include と共通。
そのため gem ごとの除外 (.git / test / spec) は、その gem の include の
直後に置かないと include 側で復活してしまう。

規則の並び:
  !**                                   (全除外から開始)
  vendor/bundle/bundler/**              (standalone のみ)
  .bundle/config                        (standalone 以外)
  gem ごと (name 順):
    {depRoot}/{path}/**
    {extRoot}/{name}/**                 (ネイティブ拡張あり)
    !{depRoot}/{path}/.git/**
    !{depRoot}/{path}/test/**           (excludeGemTests)
    !{depRoot}/{path}/spec/**           (excludeGemTests)
    {depRoot}/{gemspec}                 (standalone 以外)

グロブの評価そのものはホスト (serverless) 側の責務で、ここでは行わない。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .config import PackagingConfig
from .gem_inventory import GemSpec
from .runtime_profiles import BUNDLE_ROOT, RuntimeProfile

NEGATION_MARKER = "!"

EXCLUDE_ALL = "**"
STANDALONE_BOOTSTRAP = f"{BUNDLE_ROOT}/bundler/**"
BUNDLE_CONFIG_FILE = ".bundle/config"

# gem ディレクトリ内で常に除外するもの
VCS_DIRS = (".git",)
# excludeGemTests=True で除外するもの
TEST_DIRS = ("test", "spec")


@dataclass(frozen=True)
class GlobRule:
    pattern: str
    is_negated: bool = False

    def render(self) -> str:
        if self.is_negated:
            return NEGATION_MARKER + self.pattern
        return self.pattern

    @classmethod
    def include(cls, pattern: str) -> "GlobRule":
        return cls(pattern, False)

    @classmethod
    def exclude(cls, pattern: str) -> "GlobRule":
        return cls(pattern, True)


def _join(root: str, relpath: str) -> str:
    # bundler は GEM_HOME からの相対パスを "/gems/..." の形で返す
    return f"{root}/{relpath.strip('/')}"


def gem_rules(
    gem: GemSpec,
    profile: RuntimeProfile,
    config: PackagingConfig,
) -> List[GlobRule]:
    """1つの gem に対応する規則 (include が必ず除外より前)"""
    gem_dir = _join(profile.dependency_root, gem.install_path)

    rules = [GlobRule.include(f"{gem_dir}/**")]

    if gem.has_native_extensions:
        rules.append(GlobRule.include(f"{_join(profile.extension_root, gem.name)}/**"))

    for dirname in VCS_DIRS:
        rules.append(GlobRule.exclude(f"{gem_dir}/{dirname}/**"))

    if config.exclude_gem_tests:
        for dirname in TEST_DIRS:
            rules.append(GlobRule.exclude(f"{gem_dir}/{dirname}/**"))

    # bundler/setup は実行時に gemspec を読む
    if not config.standalone:
        rules.append(GlobRule.include(_join(profile.dependency_root, gem.manifest_rel_path)))

    return rules


def build_rules(
    profile: RuntimeProfile,
    inventory: Sequence[GemSpec],
    config: PackagingConfig,
) -> List[GlobRule]:
    """
    gem 一覧から include/exclude 規則の列を生成する。

    純粋関数。inventory は name 順に並べ直してから処理するため、
    同じ入力に対して常に同じ列を返す。
    """
    rules = [GlobRule.exclude(EXCLUDE_ALL)]

    if config.standalone:
        # standalone は vendor/bundle/bundler/setup.rb から読み込む
        rules.append(GlobRule.include(STANDALONE_BOOTSTRAP))
    else:
        # Bundler.setup は .bundle/config から BUNDLE_PATH を解決する
        rules.append(GlobRule.include(BUNDLE_CONFIG_FILE))

    for gem in sorted(inventory, key=lambda g: g.name):
        rules.extend(gem_rules(gem, profile, config))

    return rules


def render_rules(rules: Iterable[GlobRule]) -> List[str]:
    return [rule.render() for rule in rules]
