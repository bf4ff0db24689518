"""Tests for CLI entrypoints."""

from __future__ import annotations

import io
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
from dotenv import dotenv_values

from ns_libre_sync import cli
from ns_libre_sync.config import REQUIRED_KEYS, Resolution
from ns_libre_sync.errors import TransferError
from ns_libre_sync.model import EffectiveConfig, Entry, EntryKind, RunMode, TimeWindow

_ENV = {
    "nightscoutUrl": "https://ns.example",
    "nightscoutToken": "tok",
    "libreUsername": "me@example.com",
    "librePassword": "secret",
    "glucose": "1",
    "food": "false",
    "insulin": "false",
    "libreDevice": "ENV-DEVICE",
}


class _Recorder:
    """Fake Nightscout/LibreView pair sharing one call log."""

    def __init__(
        self,
        entries: list[Entry] | None = None,
        session: Any = "session",
        transfer_error: Exception | None = None,
    ) -> None:
        self.entries = entries if entries is not None else [{"valueInMgPerDl": 100}]
        self.session = session
        self.transfer_error = transfer_error
        self.calls: list[tuple[Any, ...]] = []

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        recorder = self

        class _Source:
            def __init__(self, url: str, token: str | None) -> None:
                recorder.calls.append(("source", url, token))

            def get_entries(self, kind: EntryKind, window: TimeWindow) -> list[Entry]:
                recorder.calls.append(("fetch", kind))
                return list(recorder.entries)

        class _Sink:
            def __init__(self, url: str) -> None:
                recorder.calls.append(("sink", url))

            def authenticate(self, *args: Any) -> Any:
                recorder.calls.append(("auth", *args))
                return recorder.session

            def transfer(
                self,
                device_id: str,
                session: Any,
                glucose: Sequence[Entry],
                food: Sequence[Entry],
                insulin: Sequence[Entry],
            ) -> None:
                if recorder.transfer_error is not None:
                    raise recorder.transfer_error
                recorder.calls.append(("transfer", device_id, len(glucose)))

        monkeypatch.setattr(cli, "NightscoutSource", _Source)
        monkeypatch.setattr(cli, "LibreViewSink", _Sink)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in REQUIRED_KEYS:
        monkeypatch.delenv(key, raising=False)


def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in _ENV.items():
        monkeypatch.setenv(key, value)


def _args(tmp_path: Path, *extra: str) -> list[str]:
    return [
        "--config-dir",
        str(tmp_path / "config"),
        "--env-file",
        str(tmp_path / "missing.env"),
        "--grace-seconds",
        "0",
        *extra,
    ]


def test_parse_args_custom_values() -> None:
    ns = cli.parse_args(
        ["--config-dir", "/tmp/cfg", "--grace-seconds", "2.5", "--reconfigure", "--parallel-fetch"]
    )
    assert ns.config_dir == "/tmp/cfg"
    assert ns.grace_seconds == 2.5
    assert ns.reconfigure is True
    assert ns.parallel_fetch is True
    assert ns.env_file == "config.env"


def test_parse_args_defaults() -> None:
    ns = cli.parse_args([])
    assert ns.config_dir == "config"
    assert ns.grace_seconds == 10.0
    assert ns.reconfigure is False
    assert ns.log_level == "INFO"


def test_main_automatic_run_commits(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    recorder = _Recorder()
    recorder.install(monkeypatch)

    code = cli.main(_args(tmp_path))

    assert code == 0
    assert ("source", "https://ns.example", "tok") in recorder.calls
    assert [c for c in recorder.calls if c[0] == "fetch"] == [("fetch", EntryKind.GLUCOSE)]
    assert ("auth", "me@example.com", "secret", "ENV-DEVICE", False) in recorder.calls
    assert ("transfer", "ENV-DEVICE", 1) in recorder.calls
    saved_config = json.loads((tmp_path / "config" / "config.json").read_text(encoding="utf-8"))
    assert saved_config["auto"] is True
    cursor = json.loads((tmp_path / "config" / "last.json").read_text(encoding="utf-8"))
    assert cursor["glucoseEntries"] == [{"valueInMgPerDl": 100}]


def test_main_reads_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / "config.env"
    env_file.write_text("".join(f"{k}={v}\n" for k, v in _ENV.items()), encoding="utf-8")

    def _load_dotenv(path: Path) -> bool:
        for key, value in dotenv_values(path).items():
            monkeypatch.setenv(key, value or "")
        return True

    monkeypatch.setattr(cli, "load_dotenv", _load_dotenv)
    recorder = _Recorder()
    recorder.install(monkeypatch)

    code = cli.main(
        ["--config-dir", str(tmp_path / "config"), "--env-file", str(env_file), "--grace-seconds", "0"]
    )

    assert code == 0
    assert ("transfer", "ENV-DEVICE", 1) in recorder.calls


def test_main_noop_keeps_default_cursor(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    recorder = _Recorder(entries=[])
    recorder.install(monkeypatch)

    code = cli.main(_args(tmp_path))

    assert code == 0
    assert not any(c[0] == "auth" for c in recorder.calls)
    cursor = json.loads((tmp_path / "config" / "last.json").read_text(encoding="utf-8"))
    assert list(cursor) == ["last"]


def test_main_auth_failure_exit_code(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    _Recorder(session=None).install(monkeypatch)
    assert cli.main(_args(tmp_path)) == 2


def test_main_transfer_failure_exit_code(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    _Recorder(transfer_error=TransferError("rejected")).install(monkeypatch)

    assert cli.main(_args(tmp_path)) == 3
    cursor = json.loads((tmp_path / "config" / "last.json").read_text(encoding="utf-8"))
    assert "glucoseEntries" not in cursor


def test_main_config_error_without_terminal(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    recorder = _Recorder()
    recorder.install(monkeypatch)
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO())

    assert cli.main(_args(tmp_path)) == 1
    assert recorder.calls == []
    assert not (tmp_path / "config" / "last.json").exists()


def test_main_malformed_config_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "config.json").write_text("{oops", encoding="utf-8")
    recorder = _Recorder()
    recorder.install(monkeypatch)

    assert cli.main(_args(tmp_path)) == 1
    assert recorder.calls == []


def test_main_auto_enabled_for_next_run(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = EffectiveConfig(
        nightscout_url="https://ns.example",
        nightscout_token=None,
        libre_username="me",
        libre_password="pw",
        libre_device="D",
        auto=True,
    )
    monkeypatch.setattr(
        cli,
        "resolve_config",
        lambda *args, **kwargs: Resolution(config=config, mode=RunMode.AUTOMATIC, should_sync=False),
    )
    recorder = _Recorder()
    recorder.install(monkeypatch)

    assert cli.main(_args(tmp_path)) == 0
    assert recorder.calls == []


def test_main_manual_mode_uses_month_window(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = EffectiveConfig(
        nightscout_url="https://ns.example",
        nightscout_token=None,
        libre_username="me",
        libre_password="pw",
        libre_device="D",
    )
    monkeypatch.setattr(
        cli,
        "resolve_config",
        lambda *args, **kwargs: Resolution(
            config=config, mode=RunMode.MANUAL, year=2024, month=2, reset_device=True
        ),
    )
    recorder = _Recorder()
    recorder.install(monkeypatch)

    assert cli.main(_args(tmp_path)) == 0
    assert ("auth", "me", "pw", "D", True) in recorder.calls
    cursor = json.loads((tmp_path / "config" / "last.json").read_text(encoding="utf-8"))
    assert cursor["last"] == "2024-04-01T00:00:00.000Z"


def test_main_cancelled_during_grace(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_env(monkeypatch)
    recorder = _Recorder()
    recorder.install(monkeypatch)

    def _interrupt(_: float) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli.time, "sleep", _interrupt)

    assert cli.main(_args(tmp_path)) == cli.CANCELLED_EXIT_CODE
    assert not any(c[0] == "fetch" for c in recorder.calls)
