"""Tests for runtime_profiles."""

from __future__ import annotations

import logging

import pytest

from ruby_package.runtime_profiles import (
    DEFAULT_RUNTIME,
    PROFILES,
    is_supported_runtime,
    resolve,
)


class TestResolve:
    """resolve() が全域かつ決定的であることを検証する。"""

    @pytest.mark.parametrize("runtime_id", sorted(PROFILES))
    def test_known_runtime_is_stable(self, runtime_id: str) -> None:
        """既知の runtime は毎回同じプロファイルを返す。"""
        assert resolve(runtime_id) == resolve(runtime_id)
        assert resolve(runtime_id).runtime_id == runtime_id

    def test_ruby27_layout(self) -> None:
        profile = resolve("ruby2.7")
        assert profile.package_version == "2.7.0"
        assert profile.extension_api_version == "2.7.0"
        assert profile.sandbox_image == "lambci/lambda:build-ruby2.7"
        assert profile.dependency_root == "vendor/bundle/ruby/2.7.0"
        assert profile.extension_root == "vendor/bundle/ruby/extensions/x86_64-linux/2.7.0"

    def test_ruby25_uses_static_extension_api(self) -> None:
        profile = resolve("ruby2.5")
        assert profile.package_version == "2.5.0"
        assert profile.extension_api_version == "2.5.0-static"
        assert profile.sandbox_image == "lambci/lambda:build-ruby2.5"

    @pytest.mark.parametrize("runtime_id", ["ruby3.2", "python3.9", "", None])
    def test_unknown_runtime_falls_back(self, runtime_id, caplog) -> None:
        """未知の runtime は例外を出さずデフォルトの配置を返し、警告する。"""
        with caplog.at_level(logging.WARNING, logger="srp"):
            profile = resolve(runtime_id)

        default = PROFILES[DEFAULT_RUNTIME]
        assert profile.package_version == default.package_version
        assert profile.extension_api_version == default.extension_api_version
        assert profile.sandbox_image == default.sandbox_image
        assert any("Unknown runtime" in r.getMessage() for r in caplog.records)

    def test_is_supported_runtime(self) -> None:
        assert is_supported_runtime("ruby2.5")
        assert is_supported_runtime("ruby2.7")
        assert not is_supported_runtime("ruby3.2")
        assert not is_supported_runtime(None)
