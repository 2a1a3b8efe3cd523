import json

import pytest

from receipt_automation.cli import main as cli_main
from receipt_automation.exceptions import CollaboratorError

from conftest import SAMPLE_RECEIPT, FakeVision, fenced


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for key in ("RECEIPT_BACKEND", "RECEIPT_MODEL", "RECEIPT_MAX_UPLOAD_BYTES"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RECEIPT_ROOT", str(tmp_path))
    monkeypatch.setenv("RECEIPT_BACKEND", "ollama")


def _use_vision(monkeypatch, *answers):
    vision = FakeVision(*answers)
    monkeypatch.setattr(cli_main, "build_vision_client", lambda config: vision)
    return vision


def _image(tmp_path, name="cafe.jpg"):
    path = tmp_path / name
    path.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    return str(path)


def test_transcribe_no_store_prints_record(monkeypatch, tmp_path, capsys):
    _use_vision(monkeypatch, fenced(SAMPLE_RECEIPT))
    code = cli_main.main(["--env-dir", str(tmp_path), "transcribe", "--source", _image(tmp_path), "--no-store"])
    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["merchant"]["name"] == "Cafe X"


def test_transcribe_store_list_export_delete(monkeypatch, tmp_path, capsys):
    _use_vision(monkeypatch, fenced(SAMPLE_RECEIPT))
    env = ["--env-dir", str(tmp_path)]

    assert cli_main.main(env + ["transcribe", "--source", _image(tmp_path)]) == 0
    item = json.loads(capsys.readouterr().out)
    assert item["status"] == "done"

    assert cli_main.main(env + ["list"]) == 0
    listing = capsys.readouterr().out
    assert item["id"] in listing
    assert "Cafe X" in listing

    out_base = tmp_path / "exports" / "march"
    assert cli_main.main(env + ["export", "--format", "csv", "--output", str(out_base)]) == 0
    written = tmp_path / "exports" / "march.csv"
    assert capsys.readouterr().out.strip() == str(written)
    assert "Cafe X" in written.read_text(encoding="utf-8-sig")

    assert cli_main.main(env + ["delete", "--id", item["id"]]) == 0
    assert cli_main.main(env + ["delete", "--id", item["id"]]) == 1


def test_failed_transcription_and_retry(monkeypatch, tmp_path, capsys):
    _use_vision(monkeypatch, CollaboratorError("backend offline"), fenced(SAMPLE_RECEIPT))
    env = ["--env-dir", str(tmp_path)]

    assert cli_main.main(env + ["transcribe", "--source", _image(tmp_path)]) == 1
    failed = json.loads(capsys.readouterr().out)
    assert failed["error"] == "backend offline"

    assert cli_main.main(env + ["retry", "--id", failed["id"]]) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "done"
    assert cli_main.main(env + ["retry", "--id", "unknown"]) == 1


def test_errors_map_to_exit_code_two(monkeypatch, tmp_path):
    _use_vision(monkeypatch, fenced(SAMPLE_RECEIPT))
    env = ["--env-dir", str(tmp_path)]
    assert cli_main.main(env + ["transcribe", "--source", str(tmp_path / "missing.jpg")]) == 2
    text_file = tmp_path / "notes.txt"
    text_file.write_text("hello", encoding="utf-8")
    assert cli_main.main(env + ["transcribe", "--source", str(text_file), "--no-store"]) == 2


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli_main.build_parser().parse_args([])
