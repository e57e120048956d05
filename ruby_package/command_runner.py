"""
command_runner.py - 外部コマンド実行インターフェース

bundler / docker の呼び出しはすべてこのモジュールを経由する。
コマンドは argv のリストで受け取り、シェル文字列は組み立てない。
stdin へのパイプ入力 (input) をオプションで受け付ける。

タイムアウトは設けない（外部ツールが止まれば実行全体も止まる）。
テストでは CommandRunner を差し替えて呼び出し内容を記録する。
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from .logging_utils import get_structured_logger

_logger = get_structured_logger("srp.command")

# コマンドが見つからない / 起動できない場合の終了コード (シェル慣習)
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """コマンド実行結果"""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """エラー表示用: stderr 優先、空なら stdout"""
        return (self.stderr or self.stdout).strip()


class CommandRunner:
    """
    subprocess.run による同期実行。

    戻り値の returncode が唯一の成否シグナル。
    例外は投げず、起動失敗も CommandResult (returncode=127) として返す。
    """

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        cmd = [str(a) for a in argv]
        _logger.debug("exec", argv=cmd)

        try:
            proc = subprocess.run(
                cmd,
                input=input,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            return CommandResult(
                argv=cmd,
                returncode=EXIT_NOT_FOUND,
                stderr=f"{cmd[0]}: {e}",
            )

        return CommandResult(
            argv=cmd,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
