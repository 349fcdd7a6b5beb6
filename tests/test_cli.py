# tests/test_cli.py
"""Tests for the hepf-core command line."""

import json

import pytest

from hepf_core import __version__
from hepf_core.cli import EXIT_ERROR, EXIT_INFRA, EXIT_OK, build_parser, main


class TestRun:

    def test_text_to_stdout(self, worker_file, capsys):
        assert main(["run", "critical-section", str(worker_file)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "=== Critical Section Analysis ===" in out
        assert "Critical Section Instructions: 9 (75.00%)" in out

    def test_json_to_file(self, worker_file, tmp_path):
        dest = tmp_path / "out" / "report.json"
        rc = main(["run", "path-enumerator", str(worker_file),
                   "--max-paths", "2", "-f", "json", "-o", str(dest)])
        assert rc == EXIT_OK
        data = json.loads(dest.read_text(encoding="utf-8"))
        assert data["config"]["max_paths"] == 2
        assert data["summary"]["functions_at_limit"] == ["worker"]

    def test_fail_on_findings(self, worker_file, capsys):
        rc = main(["run", "path-critical-section", str(worker_file),
                   "--fail-on-findings"])
        assert rc == EXIT_ERROR

    def test_no_findings(self, worker_file, capsys):
        rc = main(["run", "path-fan-out", str(worker_file), "--fail-on-findings"])
        assert rc == EXIT_OK

    def test_policy_preset_and_config_file(self, worker_file, tmp_path, capsys):
        cfg = tmp_path / "hepf.json"
        cfg.write_text(json.dumps({"max_loop_iterations": 0}), encoding="utf-8")
        rc = main(["run", "path-enumerator", str(worker_file), "-c", str(cfg),
                   "--policy-preset", "1", "--format", "json"])
        assert rc == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["config"]["try_acquire_policy"] == "acquire"
        assert data["config"]["indirect_call_policy"] == "preserve"
        worker = data["functions"][0]
        assert worker["paths"] == [["entry", "body", "done"], ["entry", "done"]]


class TestErrors:

    def test_unknown_pass(self, worker_file, caplog):
        assert main(["run", "no-such-pass", str(worker_file)]) == EXIT_INFRA
        assert "unknown pass" in caplog.text

    def test_missing_input(self, tmp_path):
        assert main(["run", "critical-section", str(tmp_path / "x.ir")]) == EXIT_INFRA

    def test_syntax_error(self, tmp_path, caplog):
        bad = tmp_path / "bad.ir"
        bad.write_text("define @f( {\n", encoding="utf-8")
        assert main(["run", "critical-section", str(bad)]) == EXIT_INFRA
        assert "bad.ir:1:" in caplog.text

    def test_invalid_override(self, worker_file):
        assert main(["run", "path-enumerator", str(worker_file),
                     "--max-paths", "0"]) == EXIT_INFRA

    def test_no_command(self, capsys):
        assert main([]) == EXIT_INFRA
        assert "usage:" in capsys.readouterr().err


class TestOtherCommands:

    def test_list_passes(self, capsys):
        assert main(["list-passes"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "path-max-path" in out
        assert "5 pass(es) available." in out

    def test_dump(self, worker_file, capsys):
        assert main(["dump", str(worker_file)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "define @leaky(%m) {" in out
        assert "  %n = call @read()" in out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            build_parser().parse_args(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out
