"""
Text extraction service for uploaded policy documents.
Supports DOCX, PDF and plain-text files.
"""
import re
import logging
import tempfile
from pathlib import Path
from typing import List

import docx
from pdfminer.high_level import extract_text as pdf_extract_text
from pdfminer.pdfparser import PDFSyntaxError

logger = logging.getLogger(__name__)

# Maximum characters to extract to avoid runaway prompts
MAX_TEXT_LENGTH = 2_000_000

SUPPORTED_SUFFIXES = ('.pdf', '.docx', '.txt')

FILE_TYPES = {
    '.pdf': 'application/pdf',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.txt': 'text/plain',
}


def _normalize_whitespace(text: str) -> str:
    """
    Normalize whitespace and remove control characters.

    Args:
        text: Raw extracted text.

    Returns:
        Cleaned text with normalized whitespace.
    """
    # Remove control characters except newline, tab, carriage return
    text = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F-\x9F]', '', text)

    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n{3,}', '\n\n', text)

    lines = [line.strip() for line in text.split('\n')]
    return '\n'.join(lines).strip()


def _extract_docx_text(path: Path) -> str:
    """
    Extract text from a DOCX file: body paragraphs, then table cells.

    Raises:
        RuntimeError: On extraction failure.
    """
    try:
        doc = docx.Document(str(path))
    except Exception as e:
        logger.error(f"Failed to open DOCX: {type(e).__name__} - {str(e)}")
        raise RuntimeError("Failed to extract text from document. The file may be corrupted or in an unsupported format.")

    blocks: List[str] = [para.text for para in doc.paragraphs if para.text.strip()]

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                blocks.append(' | '.join(cells))

    text = '\n\n'.join(blocks)
    if not text.strip():
        raise RuntimeError("Document appears to be empty")

    logger.info(f"Extracted {len(text)} characters from DOCX file ({len(blocks)} blocks)")
    return text


def _extract_pdf_text(path: Path) -> str:
    """
    Extract text from a PDF file.

    Raises:
        RuntimeError: On extraction failure.
    """
    try:
        text = pdf_extract_text(str(path))
    except PDFSyntaxError:
        logger.error("PDF file has syntax errors")
        raise RuntimeError("Failed to extract text from PDF. The file may be corrupted.")
    except Exception as e:
        logger.error(f"Failed to extract text from PDF: {type(e).__name__}")
        raise RuntimeError("Failed to extract text from PDF. The file may be encrypted, corrupted, or in an unsupported format.")

    if not text or not text.strip():
        raise RuntimeError("PDF appears to be empty or contains only images")

    logger.info(f"Extracted {len(text)} characters from PDF file")
    return text


def _extract_plain_text(path: Path) -> str:
    raw = path.read_bytes()
    try:
        text = raw.decode('utf-8-sig')
    except UnicodeDecodeError:
        text = raw.decode('latin-1')
    if not text.strip():
        raise RuntimeError("Text file is empty")
    return text


def extract_text(path: Path) -> str:
    """
    Extract text from a policy document (DOCX, PDF or TXT).

    Args:
        path: Path to the document file.

    Returns:
        Normalized text content with whitespace cleaned and control characters removed.

    Raises:
        RuntimeError: If extraction fails or file format is unsupported.
    """
    path = Path(path)
    if not path.exists():
        raise RuntimeError("Document file not found")

    suffix = path.suffix.lower()
    if suffix == '.docx':
        raw_text = _extract_docx_text(path)
    elif suffix == '.pdf':
        raw_text = _extract_pdf_text(path)
    elif suffix == '.txt':
        raw_text = _extract_plain_text(path)
    else:
        logger.error(f"Unsupported file format: {suffix}")
        raise RuntimeError(f"Unsupported file format: {suffix}. Only PDF, DOCX and TXT files are supported.")

    normalized_text = _normalize_whitespace(raw_text)

    if len(normalized_text) > MAX_TEXT_LENGTH:
        logger.warning(f"Text length {len(normalized_text)} exceeds maximum {MAX_TEXT_LENGTH}, truncating")
        normalized_text = normalized_text[:MAX_TEXT_LENGTH]

    logger.info(f"Text extraction complete: {len(normalized_text)} characters after normalization")
    return normalized_text


def extract_upload(file_storage) -> dict:
    """
    Extract text from an uploaded werkzeug FileStorage.

    Returns:
        {"title", "fileType", "content"} for the UI.

    Raises:
        RuntimeError: If the file type is unsupported or extraction fails.
    """
    filename = Path(file_storage.filename or '').name
    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise RuntimeError(f"Unsupported file format: {suffix or 'none'}. Only PDF, DOCX and TXT files are supported.")

    with tempfile.TemporaryDirectory() as tmp_dir:
        temp_path = Path(tmp_dir) / f"upload{suffix}"
        file_storage.save(str(temp_path))
        content = extract_text(temp_path)

    return {
        'title': filename,
        'fileType': FILE_TYPES[suffix],
        'content': content,
    }
