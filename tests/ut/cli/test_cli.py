"""命令行入口测试"""

from __future__ import annotations

import pytest
from click.testing import CliRunner

import lockinstall.core.config as cfgmod
from lockinstall.cli import cmd_install, cmd_store, main
from lockinstall.services.container import ServiceContainer
from lockinstall.utils.logger import reset_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()


@pytest.fixture
def container(config, registry, monkeypatch: pytest.MonkeyPatch) -> ServiceContainer:
    monkeypatch.setattr(cfgmod, "_current", None)
    c = ServiceContainer(config=config)
    c._instances["registry"] = registry
    monkeypatch.setattr(cmd_install, "_svc", lambda: c)
    monkeypatch.setattr(cmd_store, "_svc", lambda: c)
    return c


class TestCli:
    def test_install(self, container, project) -> None:
        project.write_manifest({"pkg-with-1-dep": "^100.0.0"})
        result = CliRunner().invoke(main, ["install", "--dir", str(project.path)])
        assert result.exit_code == 0, result.output
        assert "已安装 2 个包实例" in result.output
        assert project.lockfile.exists()

    def test_install_error_exit_code(self, container, project) -> None:
        project.write_manifest({"is-negative": "^9.0.0"})
        result = CliRunner().invoke(main, ["install", "--dir", str(project.path)])
        assert result.exit_code == 1
        assert "is-negative" in result.output

    def test_add_save_exact(self, container, project) -> None:
        project.write_manifest({})
        result = CliRunner().invoke(
            main, ["add", "is-negative@2.0.0", "--save-exact", "--dir", str(project.path)],
        )
        assert result.exit_code == 0, result.output
        assert project.read_manifest()["dependencies"] == {"is-negative": "2.0.0"}

    def test_store_listing(self, container, project) -> None:
        project.write_manifest({"is-positive": "^1.0.0"})
        CliRunner().invoke(main, ["install", "--dir", str(project.path)])
        result = CliRunner().invoke(main, ["store", "--list"])
        assert result.exit_code == 0
        assert "条目数: 1" in result.output
        assert "is-positive@1.0.0" in result.output
