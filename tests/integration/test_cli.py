"""
Integration tests for the kolam command-line front-end.
"""

import io
import os
import re
import tempfile

import pytest

from kolam_server.tools.kolam_cli import main


class TestKolamCli:
    """Tests for the kolam CLI against a real database file."""

    @pytest.fixture
    def db_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "kolam.db")

    def run(self, capsys, db_path, *args):
        main(["--db", db_path, *args])
        return capsys.readouterr()

    def create_stream(self, capsys, db_path, title="Notes"):
        err = self.run(capsys, db_path, "streams", "--create", title).err
        return re.search(r"Created stream (\S+)", err).group(1)

    def test_streams_create_and_list(self, capsys, db_path):
        stream_id = self.create_stream(capsys, db_path, "Thesis")

        out = self.run(capsys, db_path, "streams").out
        assert stream_id in out
        assert "Thesis" in out

    def test_round_trip(self, capsys, db_path, monkeypatch):
        """add -> stage -> export -> paste -> versions."""
        stream_id = self.create_stream(capsys, db_path)
        entry_id = self.run(capsys, db_path, "add", stream_id, "A first thought").out.strip()

        self.run(capsys, db_path, "stage", entry_id)
        assert re.search(rf"^S\s+1 {entry_id}", self.run(capsys, db_path, "show", stream_id).out, re.M)

        exported = self.run(capsys, db_path, "export", stream_id, "DUMP")
        assert "A first thought" in exported.out
        key = re.search(r"<!-- bridge:([a-z0-9]{4}) -->", exported.out).group(1)

        monkeypatch.setattr("sys.stdin", io.StringIO(f"Refined thought.\n<!-- bridge:{key} -->"))
        pasted = self.run(capsys, db_path, "paste", stream_id)
        new_entry = re.search(r"Imported into (\S+) as version 1", pasted.err).group(1)

        versions = self.run(capsys, db_path, "versions", new_entry).out
        assert f"bridge {key} (DUMP)" in versions
        assert "Refined thought." in versions

    def test_commit_and_revert(self, capsys, db_path):
        stream_id = self.create_stream(capsys, db_path)
        entry_id = self.run(capsys, db_path, "add", stream_id, "Draft").out.strip()

        err = self.run(capsys, db_path, "commit", entry_id, "-m", "checkpoint").err
        assert "Committed version 1" in err

        err = self.run(capsys, db_path, "revert", entry_id, "1").err
        assert "Reverted" in err

    def test_export_to_file(self, capsys, db_path):
        stream_id = self.create_stream(capsys, db_path)
        entry_id = self.run(capsys, db_path, "add", stream_id, "Context").out.strip()
        self.run(capsys, db_path, "stage", entry_id)

        output = os.path.join(os.path.dirname(db_path), "prompt.txt")
        self.run(capsys, db_path, "export", stream_id, "GENERATE", "-o", output)

        with open(output) as f:
            assert "Context" in f.read()

        err = self.run(capsys, db_path, "cancel", stream_id).err
        assert "re-staged 1 entries" in err

    def test_errors_exit_nonzero(self, capsys, db_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["--db", db_path, "commit", "missing"])

        assert exc_info.value.code == 1
        assert "Error [NOT_FOUND]" in capsys.readouterr().err

    def test_paste_without_export(self, capsys, db_path, monkeypatch):
        stream_id = self.create_stream(capsys, db_path)
        monkeypatch.setattr("sys.stdin", io.StringIO("text <!-- bridge:abcd -->"))

        with pytest.raises(SystemExit):
            main(["--db", db_path, "paste", stream_id])
        assert "NOT_FOUND" in capsys.readouterr().err
