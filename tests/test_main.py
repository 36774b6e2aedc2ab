from autoalt import __version__
import sys

import pytest

import autoalt.cli as cli


def test_version() -> None:
    assert __version__ == "1.0.0"


def test_main_parses_cli_and_invokes_run_pipeline(monkeypatch, tmp_path) -> None:
    captured = {}

    def fake_run_pipeline(**kwargs):
        captured.update(kwargs)
        return []

    archive = tmp_path / "photos.zip"
    output_dir = tmp_path / "out"

    monkeypatch.setattr(cli, "run_pipeline", fake_run_pipeline)
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "autoalt",
            str(archive),
            "--year",
            "2025",
            "--make",
            "acura",
            "--model",
            "mdx",
            "--trim",
            "Type S",
            "--color",
            "Apex Blue Pearl",
            "--output",
            str(output_dir),
            "--backend",
            "claude",
            "--threshold",
            "4",
            "--policy",
            "largest",
            "--verify-names",
            "--claude-model",
            "claude-test-model",
        ],
    )

    cli.main()

    assert captured == {
        "archive": str(archive),
        "year": "2025",
        "model": "mdx",
        "make": "acura",
        "trim": "Type S",
        "color": "Apex Blue Pearl",
        "output_folder": str(output_dir),
        "backend": "claude",
        "threshold": 4,
        "policy": "largest",
        "verify_names": True,
        "claude_model": "claude-test-model",
    }


def test_main_defaults(monkeypatch) -> None:
    captured = {}
    monkeypatch.setattr(cli, "run_pipeline", lambda **kwargs: captured.update(kwargs))

    cli.main(["photos.zip", "--year", "2024", "--model", "Civic"])

    assert captured["backend"] == "pixel"
    assert captured["policy"] == "smallest"
    assert captured["threshold"] is None
    assert captured["verify_names"] is False
    assert captured["output_folder"] == "alt_text_output"
    assert captured["make"] == ""


def test_main_unrecognized_argument_prints_full_help(monkeypatch, capsys) -> None:
    monkeypatch.setattr(sys, "argv", ["autoalt", "photos.zip", "--year", "2025", "--model", "mdx", "--bogus"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 2
    stderr = capsys.readouterr().err
    assert "options:" in stderr
    assert "--verify-names" in stderr
    assert "error: unrecognized arguments: --bogus" in stderr


def test_main_missing_vehicle_metadata_prints_full_help(monkeypatch, capsys) -> None:
    monkeypatch.setattr(sys, "argv", ["autoalt", "photos.zip"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 2
    stderr = capsys.readouterr().err
    assert "positional arguments:" in stderr
    assert "--backend" in stderr
    assert "error: the following arguments are required: --year, --model" in stderr


def test_main_rejects_unknown_backend(monkeypatch, capsys) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["photos.zip", "--year", "2025", "--model", "mdx", "--backend", "gpt4v"])

    assert exc.value.code == 2
    assert "invalid choice: 'gpt4v'" in capsys.readouterr().err
