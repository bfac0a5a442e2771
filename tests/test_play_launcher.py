from pathlib import Path

from geocoin.cli.play import main


def test_play_launcher_creates_save_dir_and_runs_viewer(tmp_path: Path, monkeypatch) -> None:
    save_dir = tmp_path / "saves"
    captured = {}

    def fake_run(**kwargs):
        captured.update(kwargs)
        return 0

    monkeypatch.setattr("geocoin.cli.play.run_pygame_viewer", fake_run)

    result = main(["--headless", "--save-dir", str(save_dir)])

    assert result == 0
    assert save_dir.is_dir()
    assert captured["save_dir"] == str(save_dir)
    assert captured["headless"] is True
    assert captured["gps_track"] is None


def test_play_launcher_ascii_frontend_uses_text_mode(tmp_path: Path, monkeypatch) -> None:
    calls = []

    def fake_demo(save_dir: str) -> None:
        calls.append(save_dir)
        raise EOFError

    monkeypatch.setattr("geocoin.cli.play.run_demo", fake_demo)

    result = main(["--frontend", "ascii", "--save-dir", str(tmp_path)])

    assert result == 0
    assert calls == [str(tmp_path)]


def test_play_launcher_honours_headless_env_and_log_level(tmp_path: Path, monkeypatch) -> None:
    captured = {}
    levels = []

    def fake_run(**kwargs):
        captured.update(kwargs)
        return 0

    monkeypatch.setattr("geocoin.cli.play.run_pygame_viewer", fake_run)
    monkeypatch.setattr("geocoin.cli.play.logging.basicConfig", lambda **kwargs: levels.append(kwargs["level"]))
    monkeypatch.setenv("GEOCOIN_HEADLESS", "1")

    result = main(["--save-dir", str(tmp_path), "--log-level", "debug"])

    assert result == 0
    assert captured["headless"] is True
    assert levels == ["DEBUG"]
