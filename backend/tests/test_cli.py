"""
Tests for the command line interface.
"""

import argparse

import pytest

import cli
from conftest import FakeExtractor


def extract_args(inputs, **overrides):
    args = dict(input=inputs, output=None, instructions=None, json=False, concurrency=2)
    args.update(overrides)
    return argparse.Namespace(**args)


@pytest.fixture
def documents(tmp_path):
    (tmp_path / "a.png").write_bytes(b"alice")
    (tmp_path / "b.pdf").write_bytes(b"bob")
    (tmp_path / "notes.txt").write_bytes(b"ignored")
    return tmp_path


@pytest.fixture
def extractor():
    return FakeExtractor(
        {b"alice": [{"Name": "Alice"}], b"bob": [{"Name": "Bob"}]},
        headers=["Name"],
    )


class TestCollectFiles:
    def test_directory_filters_unsupported(self, documents):
        files = cli.collect_files([str(documents)])

        assert [(p.name, mime) for p, mime in files] == [("a.png", "image/png"), ("b.pdf", "application/pdf")]

    def test_missing_path_skipped(self, tmp_path):
        assert cli.collect_files([str(tmp_path / "nope.pdf")]) == []


class TestExtractCommand:
    def test_writes_csv(self, documents, extractor, tmp_path):
        output = tmp_path / "out" / "table.csv"

        cli.extract_command(extract_args([str(documents)], output=str(output)), extractor=extractor)

        lines = output.read_text(encoding="utf-8").split("\n")
        assert lines[0] == "Document,Name"
        assert sorted(lines[1:]) == ["a.png,Alice", "b.pdf,Bob"]

    def test_no_files_exits(self, tmp_path, extractor):
        with pytest.raises(SystemExit) as exc:
            cli.extract_command(extract_args([str(tmp_path)]), extractor=extractor)

        assert exc.value.code == 1

    def test_suggest_headers(self, documents, extractor, capsys):
        cli.suggest_headers_command(argparse.Namespace(input=[str(documents / "a.png")]), extractor=extractor)

        assert capsys.readouterr().out.strip() == "Name"

    def test_parser(self):
        args = cli.build_parser().parse_args(["extract", "a.png", "--json"])

        assert args.func is cli.extract_command
        assert args.json is True
