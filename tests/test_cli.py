"""Tests for the command line interface."""

import json
import logging
import os

import pytest

from panel_match.cli import build_parser, main, options_from_args
from panel_match.engine import VerificationPolicy
from panel_match.log import JsonFormatter, resolve_level

from conftest import write_image


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestOptions:
    """Tests for argument to option mapping."""

    def parse(self, *extra):
        return build_parser().parse_args(["scan", "-f", "q.png", "-d", "dir", *extra])

    def test_defaults(self):
        options = options_from_args(self.parse())
        assert options.lowes_ratio == 0.75
        assert options.features == 2000
        assert options.top_k == 5
        assert options.policy is VerificationPolicy.NONE
        assert not options.recursive

    def test_homography_flag_selects_existence(self):
        assert options_from_args(self.parse("-H")).policy is VerificationPolicy.EXISTENCE

    def test_policy_overrides_flag(self):
        options = options_from_args(self.parse("-H", "--policy", "inliers"))
        assert options.policy is VerificationPolicy.INLIERS

    def test_short_flags(self):
        options = options_from_args(self.parse("-s", "-l", "0.6", "-t", "500", "-k", "3"))
        assert options.recursive
        assert options.lowes_ratio == 0.6
        assert options.features == 500
        assert options.top_k == 3


class TestMain:
    """End-to-end CLI runs."""

    def test_scan_success(self, scan_dir, tmp_path, capsys):
        query_path, directory = scan_dir
        out = tmp_path / "renders"
        out.mkdir()
        code = main(["scan", "-f", query_path, "-d", directory, "-o", str(out)])
        assert code == 0
        assert os.path.exists(out / "match-1.jpg")
        first_line = capsys.readouterr().out.splitlines()[0]
        assert first_line.startswith("1\t")
        assert first_line.endswith("copy.png")

    def test_scan_missing_query(self, scan_dir):
        _, directory = scan_dir
        assert main(["scan", "-f", "nope.png", "-d", directory]) == 1

    def test_scan_missing_output_dir(self, scan_dir, tmp_path):
        query_path, directory = scan_dir
        out = tmp_path / "missing"
        code = main(["scan", "-f", query_path, "-d", directory, "-o", str(out)])
        assert code == 1
        assert not out.exists()

    def test_scan_output_is_a_file(self, scan_dir, tmp_path):
        query_path, directory = scan_dir
        out = tmp_path / "taken"
        out.write_text("not a directory")
        assert main(["scan", "-f", query_path, "-d", directory, "-o", str(out)]) == 1

    def test_signatures_unwritable_output(self, tmp_path, query_image):
        path = write_image(tmp_path / "page.png", query_image)
        output = tmp_path / "missing" / "sig.json"
        assert main(["signatures", "-f", path, "-o", str(output), "-t", "100"]) == 1

    def test_signatures(self, tmp_path, query_image):
        path = write_image(tmp_path / "page.png", query_image)
        output = tmp_path / "sig.json"
        assert main(["signatures", "-f", path, "-o", str(output), "-t", "100"]) == 0
        vectors = json.loads(output.read_text())
        assert 0 < len(vectors) <= 100
        assert len(vectors[0]) == 32

    def test_signatures_missing_file(self, tmp_path):
        assert main(["signatures", "-f", str(tmp_path / "none.png")]) == 1


class TestLogging:
    """Tests for logging setup helpers."""

    def test_level_from_argument(self):
        assert resolve_level("debug") == logging.DEBUG

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("PANEL_MATCH_LOG_LEVEL", "ERROR")
        assert resolve_level() == logging.ERROR

    def test_unknown_level_falls_back(self):
        assert resolve_level("chatty") == logging.INFO

    def test_json_formatter(self):
        record = logging.LogRecord("panel_match", logging.WARNING, __file__, 1, "skip %s", ("x",), None)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "WARNING"
        assert payload["message"] == "skip x"
        assert payload["name"] == "panel_match"
