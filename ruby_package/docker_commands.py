"""
docker_commands.py - docker コマンド引数リスト生成

ネイティブ拡張ビルド用コンテナの create / cp / run / rm の
argv を組み立てる。build() 系はすべて List[str] を返すだけで、
subprocess の呼び出し方法には関与しない。

コンテナ構成:
  docker create -v {mount} --name {name} {image} /bin/true
      → 空のデータコンテナ。{mount} がボリュームになる
  docker run --rm --volumes-from {name} -w {mount} {image} {command...}
      → データコンテナのボリュームを借りてコマンドを実行
"""

from __future__ import annotations

import posixpath
from typing import List, Optional

DOCKER = "docker"


class DockerRunBuilder:
    """
    `docker run --rm --volumes-from` コマンド引数リストを構築する Builder。

    Usage::

        cmd = (
            DockerRunBuilder(volumes_from="srp.packaged-gems")
            .workdir("/var/task")
            .image("lambci/lambda:build-ruby2.7")
            .command(["bundle", "install"])
            .build()
        )
    """

    def __init__(self, volumes_from: str) -> None:
        self._volumes_from: str = volumes_from
        self._workdir_val: Optional[str] = None
        self._image_val: Optional[str] = None
        self._command_val: List[str] = []

    def __iter__(self):
        raise TypeError(
            "DockerRunBuilder is not iterable. "
            "Did you forget to call .build()?"
        )

    def __str__(self):
        return "<DockerRunBuilder: call .build() to get command list>"

    def workdir(self, path: str) -> "DockerRunBuilder":
        """-w ワーキングディレクトリを設定"""
        self._workdir_val = path
        return self

    def image(self, img: str) -> "DockerRunBuilder":
        """Docker イメージを設定"""
        self._image_val = img
        return self

    def command(self, cmd: List[str]) -> "DockerRunBuilder":
        """コンテナ内で実行するコマンドを設定"""
        self._command_val = list(cmd)
        return self

    def build(self) -> List[str]:
        """
        docker run コマンド引数リストを生成して返す。

        Raises:
            ValueError: image が未設定の場合
        """
        if not self._image_val:
            raise ValueError("image is required: call .image(...) before .build()")

        cmd: List[str] = [
            DOCKER, "run",
            "--rm",
            "--volumes-from", self._volumes_from,
        ]
        if self._workdir_val is not None:
            cmd.extend(["-w", self._workdir_val])

        cmd.append(self._image_val)
        cmd.extend(self._command_val)
        return cmd


class SandboxCommands:
    """1つのビルドコンテナに対する docker コマンド群"""

    def __init__(self, name: str, mount_path: str, image: str) -> None:
        self.name = name
        self.mount_path = mount_path.rstrip("/") or "/"
        self.image = image

    def container_path(self, relpath: str) -> str:
        """コンテナ内パスを `{name}:{mount}/{relpath}` 形式で返す"""
        return f"{self.name}:{posixpath.join(self.mount_path, relpath.lstrip('/'))}"

    def create(self) -> List[str]:
        return [
            DOCKER, "create",
            "-v", self.mount_path,
            "--name", self.name,
            self.image,
            "/bin/true",
        ]

    def copy_in(self, host_path: str, relpath: str) -> List[str]:
        return [DOCKER, "cp", host_path, self.container_path(relpath)]

    def copy_out(self, relpath: str, host_dir: str) -> List[str]:
        return [DOCKER, "cp", self.container_path(relpath), host_dir]

    def run(self, command: List[str]) -> List[str]:
        return (
            DockerRunBuilder(volumes_from=self.name)
            .workdir(self.mount_path)
            .image(self.image)
            .command(command)
            .build()
        )

    def bundle_config(self, key: str, value: str) -> List[str]:
        return self.run(["bundle", "config", "set", "--local", key, value])

    def remove(self) -> List[str]:
        return [DOCKER, "rm", self.name]
