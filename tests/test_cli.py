import json
from unittest.mock import AsyncMock, patch

from PIL import Image

from gallery_scout.cli import _ensure_command_prefix, main, parse_args
from gallery_scout.crawler import PageReport
from gallery_scout.filters import FilterRules, ValueRule
from gallery_scout.models import CandidateItem, DiscoveryResult


def test_discover_is_the_default_command():
    commands = ("discover", "hash")
    assert tuple(_ensure_command_prefix(["https://example.com"], commands)) == ("discover", "https://example.com")
    assert tuple(_ensure_command_prefix(["hash", "a.png"], commands)) == ("hash", "a.png")
    assert tuple(_ensure_command_prefix(["--help"], commands)) == ("--help",)


def test_parse_discover_options():
    args = parse_args(["https://example.com", "--dedup", "--max-distance", "3", "--algorithm", "average"])
    assert args.command == "discover"
    assert args.urls == ["https://example.com"]
    assert args.dedup is True
    assert args.max_distance == 3
    assert args.algorithm == "average"
    assert args.selector is None


def test_hash_command_prints_fingerprints(tmp_path, capsys):
    path = tmp_path / "flat.png"
    Image.new("RGB", (20, 20), (40, 40, 40)).save(path)
    assert main(["hash", str(path), "--bits", "--precision", "4"]) == 0
    out = capsys.readouterr().out
    assert out == f"{'0' * 16}  {path}\n"


def test_hash_command_reports_unreadable_files(tmp_path, capsys):
    missing = tmp_path / "missing.png"
    assert main(["hash", str(missing)]) == 1
    assert capsys.readouterr().out == ""


def test_discover_loads_rules_and_prints_json(tmp_path, capsys):
    rules_path = tmp_path / "rules.json"
    rules_path.write_text(json.dumps({"extensions": [{"value": ".jpg", "include": True}]}), encoding="utf-8")
    report = PageReport(
        url="https://example.com/",
        result=DiscoveryResult(items=[CandidateItem("https://example.com/a.jpg")], confidence=0.9, method="pattern-analysis"),
    )
    runner = AsyncMock(return_value=[report])

    with patch("gallery_scout.cli.run_discovery", runner):
        status = main(["https://example.com/", "--rules", str(rules_path), "--output", str(tmp_path), "--json"])

    assert status == 0
    urls, config, rules = runner.await_args.args
    assert urls == ["https://example.com/"]
    assert config.output_root == tmp_path.resolve()
    assert rules == FilterRules(extensions=(ValueRule(".jpg", True),))
    printed = json.loads(capsys.readouterr().out)
    assert printed[0]["items"][0]["source_url"] == "https://example.com/a.jpg"


def test_discover_rejects_invalid_rules(tmp_path):
    rules_path = tmp_path / "rules.json"
    rules_path.write_text('["not", "an", "object"]', encoding="utf-8")
    runner = AsyncMock()
    with patch("gallery_scout.cli.run_discovery", runner):
        assert main(["https://example.com/", "--rules", str(rules_path)]) == 2
    runner.assert_not_called()


def test_discover_returns_failure_when_every_page_fails(tmp_path):
    failed = PageReport(url="https://example.com/", result=DiscoveryResult.failed("timeout"))
    with patch("gallery_scout.cli.run_discovery", AsyncMock(return_value=[failed])):
        assert main(["https://example.com/", "--output", str(tmp_path)]) == 1


def test_discover_reports_malformed_rule_entries(tmp_path):
    rules_path = tmp_path / "rules.json"
    rules_path.write_text(json.dumps({"extensions": [{"include": True}]}), encoding="utf-8")
    runner = AsyncMock()
    with patch("gallery_scout.cli.run_discovery", runner):
        assert main(["discover", "https://example.com", "--rules", str(rules_path)]) == 2
    runner.assert_not_called()


def test_hash_command_accepts_wavelet(tmp_path, capsys):
    path = tmp_path / "flat.png"
    Image.new("RGB", (32, 32), (40, 40, 40)).save(path)
    assert main(["hash", str(path), "--algorithm", "wavelet", "--precision", "4", "--bits"]) == 0
    fingerprint, source = capsys.readouterr().out.split()
    assert len(fingerprint) == 16
    assert source == str(path)
