from __future__ import annotations

import pytest

from xdr_installer import logging_utils
from xdr_installer import main as cli
from xdr_installer.config_store import Configuration
from xdr_installer.lib.prompt import AutoPrompter
from xdr_installer.state_store import StateStore


@pytest.fixture
def paths(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda log_path, also_console: log_path)
    return {
        "config": str(tmp_path / "xdr_install.conf"),
        "state": str(tmp_path / "xdr_install.state"),
        "log": str(tmp_path / "xdr_install.log"),
    }


def argv(paths, *rest):
    return ["--config", paths["config"], "--state", paths["state"], "--log", paths["log"], *rest]


def test_parser_modes():
    parser = cli.build_parser()
    assert parser.parse_args(["run"]).dry_run is None
    assert parser.parse_args(["--execute", "run"]).dry_run is False
    assert parser.parse_args(["--dry-run", "status"]).dry_run is True
    with pytest.raises(SystemExit):
        parser.parse_args(["--execute", "--dry-run", "run"])
    assert parser.parse_args(["step", "03_nic_ifupdown"]).step_id == "03_nic_ifupdown"


def test_build_orchestrator_persists_mode_override(paths):
    orch = cli.build_orchestrator(
        config_path=paths["config"], state_path=paths["state"], prompter=AutoPrompter(), dry_run=False
    )
    assert orch.ctx.dry_run is False
    assert Configuration.load(paths["config"]).dry_run is False
    assert len(orch.registry) == 10


def test_config_set_and_show(paths, capsys):
    assert cli.main(argv(paths, "config", "set", "SENSOR_VM_COUNT", "1")) == 0
    assert Configuration.load(paths["config"])["SENSOR_VM_COUNT"] == 1
    assert cli.main(argv(paths, "config", "set", "NOT_A_KEY", "1")) == 2
    assert "Cannot set NOT_A_KEY" in capsys.readouterr().out


def test_declined_step_exits_cleanly(paths, monkeypatch):
    monkeypatch.setattr(cli, "ConsolePrompter", lambda console: AutoPrompter(answers={"STEP 02_hwe_kernel": False}))
    assert cli.main(argv(paths, "step", "02_hwe_kernel")) == 0
    assert StateStore(paths["state"]).load().last_completed_step_id is None


def test_unknown_step_fails(paths):
    assert cli.main(argv(paths, "--yes", "step", "99_nope")) == 1


def test_status_and_log(paths, capsys):
    assert cli.main(argv(paths, "status")) == 0
    assert "01_hw_detect" in capsys.readouterr().out
    assert cli.main(argv(paths, "log", "--lines", "5")) == 0
    assert "(log is empty)" in capsys.readouterr().out


def test_log_path_falls_back_to_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    assert logging_utils._usable_log_path(str(blocker / "xdr_install.log")) == str(tmp_path / "xdr-installer.log")
    assert logging_utils._usable_log_path(str(tmp_path / "logs/xdr_install.log")) == str(tmp_path / "logs/xdr_install.log")
