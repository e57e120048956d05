"""
conftest.py - テスト共通 fixture

外部コマンド (bundle / docker) は FakeRunner に置き換え、
呼び出された argv を記録する。
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from ruby_package.command_runner import CommandResult
from ruby_package.logging_utils import clear_run_id, reset_configuration


@dataclass
class RecordedCall:
    argv: List[str]
    input: Optional[str] = None
    env: Optional[Dict[str, str]] = None


def _contains(argv: Sequence[str], tokens: Sequence[str]) -> bool:
    n = len(tokens)
    return any(list(argv[i:i + n]) == list(tokens) for i in range(len(argv) - n + 1))


class FakeRunner:
    """CommandRunner の代替。on() で登録した応答を返し、呼び出しを記録する。"""

    def __init__(self) -> None:
        self.calls: List[RecordedCall] = []
        self._responses: List[Tuple[Tuple[str, ...], int, str, str]] = []

    def on(self, *tokens: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> "FakeRunner":
        """argv に tokens が連続して含まれる呼び出しへの応答を登録する (後勝ち)"""
        self._responses.insert(0, (tokens, returncode, stdout, stderr))
        return self

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        cmd = list(argv)
        self.calls.append(RecordedCall(cmd, input, dict(env) if env is not None else None))
        for tokens, returncode, stdout, stderr in self._responses:
            if _contains(cmd, tokens):
                return CommandResult(cmd, returncode, stdout, stderr)
        return CommandResult(cmd, 0)

    @property
    def argvs(self) -> List[List[str]]:
        return [c.argv for c in self.calls]

    def called(self, *tokens: str) -> bool:
        return any(_contains(a, tokens) for a in self.argvs)

    def index_of(self, *tokens: str) -> int:
        for i, a in enumerate(self.argvs):
            if _contains(a, tokens):
                return i
        raise AssertionError(f"command containing {tokens} was not run: {self.argvs}")


NOKOGIRI = {
    "extensions": True,
    "name": "nokogiri-1.11.0",
    "path": "/gems/nokogiri-1.11.0",
    "gemspec": "/specifications/nokogiri-1.11.0.gemspec",
}
RACK = {
    "extensions": False,
    "name": "rack-2.2.3",
    "path": "/gems/rack-2.2.3",
    "gemspec": "/specifications/rack-2.2.3.gemspec",
}


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def gem_output() -> str:
    return json.dumps([NOKOGIRI, RACK])


@pytest.fixture(autouse=True)
def _clean_env_vars(monkeypatch):
    """テスト間で環境変数が漏れないようにする"""
    for var in (
        "CROSS_COMPILE_EXTENSIONS",
        "SRP_DEBUG",
        "SRP_LOG_FORMAT",
        "BUNDLE_GEMFILE",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    clear_run_id()
    reset_configuration()
