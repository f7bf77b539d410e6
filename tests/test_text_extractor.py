"""
Tests for uploaded document text extraction.
"""
import io

import docx
import pytest
from werkzeug.datastructures import FileStorage

from consentlens.services.text_extractor import (
    _normalize_whitespace,
    extract_text,
    extract_upload,
)


class TestNormalizeWhitespace:
    def test_collapses_spaces_and_blank_lines(self):
        assert _normalize_whitespace("a  \t b\r\n\r\n\r\n\r\nc  ") == "a b\n\nc"

    def test_strips_control_characters(self):
        assert _normalize_whitespace("data\x00 col\x07lection") == "data collection"


class TestExtractText:
    def test_plain_text(self, tmp_path):
        path = tmp_path / 'policy.txt'
        path.write_text("We collect   your email.\n\n\n\nWe never sell it.", encoding='utf-8')

        assert extract_text(path) == "We collect your email.\n\nWe never sell it."

    def test_latin1_text(self, tmp_path):
        path = tmp_path / 'policy.txt'
        path.write_bytes("Données personnelles".encode('latin-1'))

        assert extract_text(path) == "Données personnelles"

    def test_docx_paragraphs_and_tables(self, tmp_path):
        path = tmp_path / 'policy.docx'
        document = docx.Document()
        document.add_paragraph("Privacy Policy")
        document.add_paragraph("We store data for 24 months.")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Analytics"
        table.rows[0].cells[1].text = "Shared"
        document.save(str(path))

        text = extract_text(path)

        assert "Privacy Policy" in text
        assert "We store data for 24 months." in text
        assert "Analytics | Shared" in text

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / 'policy.rtf'
        path.write_text("{\\rtf1}")

        with pytest.raises(RuntimeError, match="Unsupported file format"):
            extract_text(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuntimeError, match="not found"):
            extract_text(tmp_path / 'missing.txt')

    def test_empty_text_file(self, tmp_path):
        path = tmp_path / 'empty.txt'
        path.write_text("   \n")

        with pytest.raises(RuntimeError, match="empty"):
            extract_text(path)

    def test_corrupt_docx(self, tmp_path):
        path = tmp_path / 'broken.docx'
        path.write_bytes(b'not a zip archive')

        with pytest.raises(RuntimeError, match="Failed to extract"):
            extract_text(path)


class TestExtractUpload:
    def test_upload_metadata(self):
        upload = FileStorage(stream=io.BytesIO(b"Cookie policy"), filename='../uploads/cookies.txt')

        assert extract_upload(upload) == {
            'title': 'cookies.txt',
            'fileType': 'text/plain',
            'content': 'Cookie policy',
        }

    def test_upload_unsupported(self):
        upload = FileStorage(stream=io.BytesIO(b"x"), filename='notes.md')

        with pytest.raises(RuntimeError, match="Unsupported"):
            extract_upload(upload)
