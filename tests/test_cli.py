from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("PIL.Image")
pytest.importorskip("nacl.signing")
pytest.importorskip("yaml")
pytest.importorskip("tqdm")
from PIL import Image  # noqa: E402  # pylint: disable=wrong-import-position

from photoseal import cli  # noqa: E402  # pylint: disable=wrong-import-position
from photoseal.io_utils import load_rgb_array  # noqa: E402  # pylint: disable=wrong-import-position


def _keygen(tmp_path: Path, prefix: str = "issuer") -> tuple[Path, Path]:
    assert cli.main(["keygen", "--out-dir", str(tmp_path / "keys"), "--prefix", prefix]) == 0
    return tmp_path / "keys" / f"{prefix}_public.json", tmp_path / "keys" / f"{prefix}_private.json"


def _portrait(path: Path, size=(600, 800)) -> Path:
    Image.new("RGB", size, color=(128, 128, 128)).save(path)
    return path


def _issue(tmp_path: Path, private_key: Path, source: Path, *extra: str) -> Path:
    output = tmp_path / "sealed.png"
    code = cli.main(
        [
            "issue",
            str(source),
            "--private-key",
            str(private_key),
            "--issuer-id",
            "7",
            "--card-id",
            "aa" * 16,
            "--expires",
            "2030-01-01",
            "--name",
            "Juan Dela Cruz",
            "--output",
            str(output),
            *extra,
        ]
    )
    assert code == 0
    return output


def _read_json(capsys: pytest.CaptureFixture[str]) -> Dict[str, Any]:
    out = capsys.readouterr().out
    return json.loads(out[out.index("{") :])


def test_keygen_writes_key_pair(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    public_path, private_path = _keygen(tmp_path)

    report = _read_json(capsys)
    assert public_path.exists()
    assert private_path.exists()
    assert report["alg"] == "Ed25519"
    assert report["public_key"] == str(public_path)


def test_keygen_refuses_to_overwrite(tmp_path: Path):
    _keygen(tmp_path)

    with pytest.raises(SystemExit):
        cli.main(["keygen", "--out-dir", str(tmp_path / "keys")])


def test_issue_then_verify_portrait(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    public_key, private_key = _keygen(tmp_path)
    capsys.readouterr()

    sealed = _issue(tmp_path, private_key, _portrait(tmp_path / "portrait.png"))
    summary = _read_json(capsys)

    assert load_rgb_array(sealed).shape == (512, 512, 3)
    assert summary["card_id"] == "aa" * 16
    assert summary["token_len"] == 105
    assert summary["rep_bits"] == 2520

    code = cli.main(
        ["verify", str(sealed), "--public-key", str(public_key), "--name", "juan dela cruz", "--no-progress"]
    )
    report = _read_json(capsys)

    assert code == 0
    (entry,) = report["results"]
    assert entry["verified"] is True
    assert entry["claims"]["issuer_id"] == 7
    assert entry["claims"]["expiration_date"] == "2030-01-01"
    assert entry["name_matches"] is True


def test_issue_reseals_canonical_card_in_place(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    public_key, private_key = _keygen(tmp_path)
    card_path = _portrait(tmp_path / "card.png", size=(1016, 638))

    sealed = _issue(tmp_path, private_key, card_path)
    capsys.readouterr()

    card = load_rgb_array(sealed)
    assert card.shape == (638, 1016, 3)
    assert np.all(card[:116, :, 2] == 128)
    assert cli.main(["verify", str(sealed), "--public-key", str(public_key), "--no-progress"]) == 0


def test_verify_with_foreign_key_exits_rejected(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    _, private_key = _keygen(tmp_path)
    other_public, _ = _keygen(tmp_path, prefix="other")
    sealed = _issue(tmp_path, private_key, _portrait(tmp_path / "portrait.png"))
    capsys.readouterr()
    report_path = tmp_path / "report.json"

    code = cli.main(
        ["verify", str(sealed), "--public-key", str(other_public), "--report", str(report_path), "--no-progress"]
    )

    assert code == 2
    report = json.loads(report_path.read_text())
    assert report["results"][0]["status"] == "signature_invalid"
    assert report["results"][0]["claims"]["card_id"] == "aa" * 16


def test_verify_reports_unreadable_images_and_continues(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    public_key, private_key = _keygen(tmp_path)
    sealed = _issue(tmp_path, private_key, _portrait(tmp_path / "portrait.png"))
    odd = _portrait(tmp_path / "odd.png", size=(510, 510))
    capsys.readouterr()

    code = cli.main(["verify", str(sealed), str(odd), "--public-key", str(public_key), "--no-progress"])
    report = _read_json(capsys)

    assert code == 2
    statuses = [entry["status"] for entry in report["results"]]
    assert statuses == ["verified", "error"]


def test_verify_uses_progress_wrapper(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    public_key, private_key = _keygen(tmp_path)
    sealed = _issue(tmp_path, private_key, _portrait(tmp_path / "portrait.png"))

    calls: Dict[str, Any] = {"called": False}

    def stub_progress(iterable, *, total=None, desc=None, unit=None):
        calls["called"] = True
        calls["total"] = total
        calls["desc"] = desc
        yield from iterable

    monkeypatch.setattr(cli, "tqdm", stub_progress)

    assert cli.main(["verify", str(sealed), "--public-key", str(public_key)]) == 0
    assert calls["called"] is True
    assert calls["total"] == 1
    assert "Verifying" in calls["desc"]


def test_yaml_config_supplies_options(tmp_path: Path):
    public_key, private_key = _keygen(tmp_path)
    sealed = _issue(tmp_path, private_key, _portrait(tmp_path / "portrait.png"))
    config = tmp_path / "photoseal.yaml"
    config.write_text(
        f"public-key: {public_key}\n"
        "profile: reference\n"
        "log-level: WARNING\n"
        "verify:\n"
        "  no-progress: true\n"
    )

    args = cli.parse_args(["--config", str(config), "verify", str(sealed)])

    assert args.public_key == public_key
    assert args.no_progress is True
    assert args.log_level == "WARNING"
    assert cli.main(["--config", str(config), "verify", str(sealed)]) == 0


def test_json_config_rejects_unknown_options(tmp_path: Path):
    config = tmp_path / "photoseal.json"
    config.write_text(json.dumps({"strength": 9}))

    with pytest.raises(SystemExit):
        cli.parse_args(["--config", str(config), "keygen"])


def test_issue_requires_private_key(tmp_path: Path):
    with pytest.raises(SystemExit):
        cli.parse_args(["issue", str(tmp_path / "photo.png"), "--issuer-id", "1"])


def test_issue_rejects_malformed_card_id(tmp_path: Path):
    with pytest.raises(SystemExit):
        cli.parse_args(["issue", "photo.png", "--private-key", "k.json", "--issuer-id", "1", "--card-id", "abc"])


def test_missing_key_file_is_a_usage_error(tmp_path: Path):
    photo = _portrait(tmp_path / "portrait.png")

    assert cli.main(["verify", str(photo), "--public-key", str(tmp_path / "missing.json"), "--no-progress"]) == 1


def test_marker_embed_and_detect(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    photo = _portrait(tmp_path / "photo.png", size=(256, 256))
    marked = tmp_path / "marked.png"

    assert cli.main(["marker-embed", str(photo), "--output", str(marked)]) == 0
    embed_report = _read_json(capsys)
    assert embed_report["strength"] == 26

    assert cli.main(["marker-detect", str(marked)]) == 0
    detect_report = _read_json(capsys)
    assert detect_report["results"][0]["verified"] is True

    assert cli.main(["marker-detect", str(photo)]) == 2
