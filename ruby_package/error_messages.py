"""
error_messages.py - 統一エラーメッセージ基盤

エラーコード体系、PackagingError 例外階層、ヘルパー関数を提供する。

エラーコード形式: SRP-{カテゴリ}-{3桁番号}
カテゴリ: DEP, SBX, CFG, SYS

例外階層:
  PackagingError
  ├── ConfigurationError
  ├── DependencyResolutionError
  └── SandboxError
      ├── SandboxProvisionError
      ├── SandboxStepError
      ├── SandboxInstallError
      └── SandboxTeardownError

設計原則:
- stdlib のみに依存（循環参照を作らない）
- 致命的エラーはパッケージング実行全体を中断する
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type


# ======================================================================
# エラーコード形式
# ======================================================================

# SRP-{CATEGORY(2-5大文字)}-{3桁番号}
ERROR_CODE_PATTERN = re.compile(r'^SRP-[A-Z]{2,5}-\d{3}$')


# ======================================================================
# カテゴリ列挙型
# ======================================================================

class ErrorCategory(enum.Enum):
    """エラーカテゴリ。

    DEP: 依存関係の解決 (bundler)
    SBX: サンドボックス (docker) ビルド
    CFG: 設定
    SYS: システム全般
    """

    DEP = "DEP"
    SBX = "SBX"
    CFG = "CFG"
    SYS = "SYS"


# ======================================================================
# ErrorCode データクラス（定数テンプレート）
# ======================================================================

@dataclass(frozen=True)
class ErrorCode:
    """エラーコード定数。テンプレート文字列とデフォルト suggestion を保持する。

    Attributes:
        code: SRP-{CAT}-{NNN} 形式のコード文字列。
        template: ``str.format()`` 対応のメッセージテンプレート。
        suggestion: デフォルトの解決策提案（format_error でオーバーライド可）。
        category: 所属カテゴリ。
    """

    code: str
    template: str
    suggestion: Optional[str] = None
    category: Optional[ErrorCategory] = None

    def __post_init__(self) -> None:
        if not ERROR_CODE_PATTERN.match(self.code):
            raise ValueError(
                f"Invalid error code format: {self.code!r}. "
                f"Expected SRP-{{CATEGORY}}-{{NNN}}"
            )


# ======================================================================
# 例外クラス
# ======================================================================

class PackagingError(Exception):
    """パッケージング実行の致命的エラーの基底クラス。

    Attributes:
        code: エラーコード文字列。
        message: 人間可読メッセージ。
        details: 追加情報の dict（任意）。外部ツールの stderr 等。
        suggestion: 解決策の提案（任意）。
    """

    default_code = "SRP-SYS-001"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.details = details
        self.suggestion = suggestion
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        parts = [f"code={self.code!r}", f"message={self.message!r}"]
        if self.details is not None:
            parts.append(f"details={self.details!r}")
        if self.suggestion is not None:
            parts.append(f"suggestion={self.suggestion!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Any]:
        """JSON シリアライズ可能な dict を返す。

        ``details`` / ``suggestion`` が ``None`` の場合はキー自体を含めない。
        """
        result: Dict[str, Any] = {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        return result


class ConfigurationError(PackagingError):
    """custom.rubyPackage 等の設定が不正"""

    default_code = "SRP-CFG-001"


class DependencyResolutionError(PackagingError):
    """bundler が失敗した、または解析不能な出力を返した"""

    default_code = "SRP-DEP-001"


class SandboxError(PackagingError):
    """サンドボックス (docker) 関連エラーの基底"""

    default_code = "SRP-SBX-002"


class SandboxProvisionError(SandboxError):
    """サンドボックスを作成できない（破棄対象は存在しない）"""

    default_code = "SRP-SBX-001"


class SandboxStepError(SandboxError):
    """ソース転送・bundle config・成果物回収のいずれかが失敗"""

    default_code = "SRP-SBX-002"


class SandboxInstallError(SandboxError):
    """サンドボックス内の bundle install が失敗"""

    default_code = "SRP-SBX-003"


class SandboxTeardownError(SandboxError):
    """サンドボックスの破棄に失敗（ログのみ、先行エラーを隠さない）"""

    default_code = "SRP-SBX-004"


# ======================================================================
# エラーコード定数: DEP (依存関係)
# ======================================================================

DEP_TOOL_FAILED = ErrorCode(
    code="SRP-DEP-001",
    template="bundler exited with status {returncode} while listing gems for {gemfile}",
    suggestion="Run `bundle install` locally and check that the Gemfile.lock is up to date.",
    category=ErrorCategory.DEP,
)

DEP_OUTPUT_UNPARSABLE = ErrorCode(
    code="SRP-DEP-002",
    template="Could not parse the gem list emitted by bundler: {reason}",
    suggestion="Make sure nothing in the bundle prints to stdout while it is loaded.",
    category=ErrorCategory.DEP,
)

DEP_DUPLICATE_GEM = ErrorCode(
    code="SRP-DEP-003",
    template="Gem {name!r} appears more than once in the resolved bundle",
    suggestion="Check the Gemfile.lock for conflicting entries.",
    category=ErrorCategory.DEP,
)

# ======================================================================
# エラーコード定数: SBX (サンドボックス)
# ======================================================================

SBX_PROVISION_FAILED = ErrorCode(
    code="SRP-SBX-001",
    template="Could not create build container {name!r} from image {image!r}",
    suggestion=(
        "Check that docker is running, the image exists, and no other "
        "container uses the same containerName."
    ),
    category=ErrorCategory.SBX,
)

SBX_STEP_FAILED = ErrorCode(
    code="SRP-SBX-002",
    template="Build container step {step!r} failed in {name!r}",
    suggestion="Re-run with debug enabled to see the docker output.",
    category=ErrorCategory.SBX,
)

SBX_INSTALL_FAILED = ErrorCode(
    code="SRP-SBX-003",
    template="bundle install failed inside build container {name!r}",
    suggestion="Check that the Gemfile.lock is committed and matches the Gemfile.",
    category=ErrorCategory.SBX,
)

SBX_TEARDOWN_FAILED = ErrorCode(
    code="SRP-SBX-004",
    template="Could not remove build container {name!r}",
    suggestion="Remove it manually with `docker rm {name}` before the next build.",
    category=ErrorCategory.SBX,
)

# ======================================================================
# エラーコード定数: CFG (設定)
# ======================================================================

CFG_INVALID = ErrorCode(
    code="SRP-CFG-001",
    template="Invalid custom.rubyPackage configuration: {reason}",
    suggestion="Check the option names and types in serverless.yml.",
    category=ErrorCategory.CFG,
)

CFG_SERVICE_UNREADABLE = ErrorCode(
    code="SRP-CFG-002",
    template="Could not read service definition {path}: {reason}",
    suggestion="Point --config at a valid serverless.yml.",
    category=ErrorCategory.CFG,
)

# ======================================================================
# ヘルパー関数
# ======================================================================

def format_error(
    code: ErrorCode,
    exc_class: Type[PackagingError] = PackagingError,
    *,
    details: Optional[Dict[str, Any]] = None,
    suggestion: Optional[str] = None,
    **kwargs: Any,
) -> PackagingError:
    """テンプレート文字列にパラメータを埋め込んで例外インスタンスを返す。

    Args:
        code: ErrorCode 定数。
        exc_class: 生成する例外クラス（PackagingError のサブクラス）。
        details: 追加情報 dict。
        suggestion: 解決策提案（指定しなければ ErrorCode のデフォルトを使用）。
        **kwargs: テンプレートに埋め込むパラメータ。

    Example::

        raise format_error(
            SBX_INSTALL_FAILED,
            SandboxInstallError,
            name="srp.packaged-gems",
            details={"stderr": "..."},
        )
    """
    try:
        message = code.template.format(**kwargs)
    except KeyError as exc:
        message = f"{code.template} (missing parameter: {exc})"

    resolved_suggestion = suggestion if suggestion is not None else code.suggestion
    if resolved_suggestion is not None:
        try:
            resolved_suggestion = resolved_suggestion.format(**kwargs)
        except (KeyError, IndexError):
            pass

    return exc_class(
        message,
        code=code.code,
        details=details,
        suggestion=resolved_suggestion,
    )
