"""Per-file checks applied to attachments before anything is uploaded.

Names are sanitized first and validated afterwards, so a browser-supplied
path such as "C:\\scans\\receipt.pdf" is accepted as "receipt.pdf" while
names that stay unsafe after sanitizing are rejected.
"""

import os
import re
from typing import Optional, Tuple

from ..errors import ValidationError

# Per-file limit, overridable through MAX_UPLOAD_SIZE_BYTES
MAX_FILE_SIZE = int(os.getenv('MAX_UPLOAD_SIZE_BYTES', 25 * 1024 * 1024))
MAX_NAME_LENGTH = 255

_UNSAFE_CHARS = re.compile(r'[^\w\s.-]')
_SEPARATOR_RUNS = re.compile(r'[\s_]+')
_CONTROL_CHARS = re.compile(r'[\x01-\x1f]')

Check = Tuple[bool, Optional[str]]


def validate_file_size(size_bytes: int, max_size: Optional[int] = None) -> Check:
    """Validate an attachment's size.

    Returns:
        Tuple of (is_valid, error_message)

    Example:
        >>> validate_file_size(0)
        (False, 'File is empty (0 bytes)')
    """
    limit = MAX_FILE_SIZE if max_size is None else max_size
    if size_bytes <= 0:
        return False, "File is empty (0 bytes)"
    if size_bytes > limit:
        return False, f"File exceeds maximum size of {limit} bytes (got {size_bytes} bytes)"
    return True, None


def validate_filename(filename: Optional[str]) -> Check:
    """Validate a (sanitized) attachment name.

    Rejects empty names, names over 255 characters, directory separators or
    parent references, null bytes and other control characters.

    Example:
        >>> validate_filename('guide_signature.png')
        (True, None)
    """
    if not filename or not filename.strip():
        return False, "Filename cannot be empty"
    if len(filename) > MAX_NAME_LENGTH:
        return False, f"Filename exceeds {MAX_NAME_LENGTH} characters (got {len(filename)})"
    if '..' in filename or '/' in filename or '\\' in filename:
        return False, "Filename contains path traversal or directory separators"
    if '\x00' in filename:
        return False, "Filename contains null bytes"
    if _CONTROL_CHARS.search(filename):
        return False, "Filename contains control characters"
    return True, None


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied name to a safe base name.

    Example:
        >>> sanitize_filename('../../report.pdf')
        'report.pdf'
        >>> sanitize_filename('fee receipt (copy).pdf')
        'fee_receipt_copy_.pdf'
    """
    base = os.path.basename(filename.replace('\\', '/'))
    base = _SEPARATOR_RUNS.sub('_', _UNSAFE_CHARS.sub('_', base))

    if len(base) > MAX_NAME_LENGTH:
        stem, ext = os.path.splitext(base)
        base = stem[:MAX_NAME_LENGTH - len(ext)] + ext
    return base


def check_attachment(slot: str, filename: Optional[str], size_bytes: int,
                     max_size: Optional[int] = None) -> str:
    """Sanitize and validate one attachment.

    Returns:
        The sanitized file name

    Raises:
        ValidationError: If the name or size is not acceptable
    """
    name = sanitize_filename(filename or "")
    for valid, error in (validate_filename(name), validate_file_size(size_bytes, max_size)):
        if not valid:
            raise ValidationError(error, details={"slot": slot, "file": filename})
    return name
