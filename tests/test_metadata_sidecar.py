"""Tests for layer config sidecars."""

import os
from pathlib import Path

import pytest

from packs_lifecycle.errors import AnalyzeError, ExportError
from packs_lifecycle.metadata.sidecar import read_sidecar, sidecar_path, write_sidecar


class TestSidecarPath:
    """Test sidecar_path function."""

    def test_path(self, tmp_path: Path) -> None:
        """The sidecar sits next to the layer directory."""
        assert sidecar_path(tmp_path / "bp.A", "layer1") == tmp_path / "bp.A" / "layer1.toml"


class TestWriteSidecar:
    """Test write_sidecar function."""

    def test_write_creates_parents(self, tmp_path: Path) -> None:
        """Writing should create the buildpack directory."""
        path = tmp_path / "bp.A" / "layer1.toml"
        write_sidecar(path, {"k": "v"})
        assert path.read_text() == 'k = "v"\n'

    def test_write_empty(self, tmp_path: Path) -> None:
        """Empty data should produce an empty file."""
        path = tmp_path / "l.toml"
        write_sidecar(path, {})
        assert path.read_text() == ""

    def test_write_unrenderable(self, tmp_path: Path) -> None:
        """Data TOML cannot express should raise AnalyzeError."""
        with pytest.raises(AnalyzeError) as exc_info:
            write_sidecar(tmp_path / "l.toml", {"k": None})
        assert exc_info.value.code == "sidecar_encode_error"

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores permissions")
    def test_write_unwritable(self, tmp_path: Path) -> None:
        """I/O failures should raise AnalyzeError."""
        locked = tmp_path / "locked"
        locked.mkdir(mode=0o500)
        try:
            with pytest.raises(AnalyzeError) as exc_info:
                write_sidecar(locked / "l.toml", {"k": "v"})
            assert exc_info.value.code == "sidecar_write_error"
        finally:
            locked.chmod(0o700)


class TestReadSidecar:
    """Test read_sidecar function."""

    def test_read(self, tmp_path: Path) -> None:
        """Reading should return parsed data and raw text."""
        path = tmp_path / "l.toml"
        raw = '# cached deps\nversion = "1.2"\n[env]\nPATH = "/x"\n'
        path.write_text(raw)
        data, text = read_sidecar(path)
        assert data == {"version": "1.2", "env": {"PATH": "/x"}}
        assert text == raw

    def test_read_invalid(self, tmp_path: Path) -> None:
        """Invalid TOML should raise ExportError."""
        path = tmp_path / "l.toml"
        path.write_text("k = ")
        with pytest.raises(ExportError):
            read_sidecar(path)

    def test_read_missing(self, tmp_path: Path) -> None:
        """A missing file should raise ExportError."""
        with pytest.raises(ExportError) as exc_info:
            read_sidecar(tmp_path / "missing.toml")
        assert exc_info.value.code == "sidecar_read_error"
