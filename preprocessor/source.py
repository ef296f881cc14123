"""
Source loading and offset bookkeeping.

The engine treats loading as an opaque ``(path) -> bytes`` provider. Text is
decoded with ``surrogateescape`` so that edits computed on character offsets
map back onto the original bytes losslessly.
"""

import logging
from bisect import bisect_right
from dataclasses import dataclass
from functools import cached_property
from typing import Callable, List

logger = logging.getLogger(__name__)

SourceLoader = Callable[[str], bytes]

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def read_source_file(file_path: str) -> bytes:
    """Read a C/C++ source file from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        IOError: If the file cannot be read.
    """
    try:
        with open(file_path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        logger.debug(f"File not found: {file_path}")
        raise
    except IOError as e:
        logger.error(f"Error reading file {file_path}: {e}")
        raise


def decode_source(data: bytes) -> str:
    """Decode raw source bytes into text."""
    if not isinstance(data, bytes):
        raise TypeError(f"Source must be bytes, got {type(data).__name__}")
    return data.decode(_ENCODING, errors=_ERRORS)


@dataclass(frozen=True)
class SourceFile:
    """Decoded text of one file taking part in a translation unit."""

    path: str
    text: str

    @cached_property
    def data(self) -> bytes:
        return self.text.encode(_ENCODING, errors=_ERRORS)

    @cached_property
    def is_ascii(self) -> bool:
        return self.text.isascii()

    @cached_property
    def _byte_offsets(self) -> List[int]:
        offsets = [0]
        total = 0
        for ch in self.text:
            total += len(ch.encode(_ENCODING, errors=_ERRORS))
            offsets.append(total)
        return offsets

    def byte_offset(self, offset: int) -> int:
        """Convert a character offset into a UTF-8 byte offset."""
        if self.is_ascii:
            return offset
        offset = max(0, min(offset, len(self.text)))
        return self._byte_offsets[offset]

    def char_offset(self, byte_offset: int) -> int:
        """Convert a UTF-8 byte offset (as reported by tree-sitter) into a character offset."""
        if self.is_ascii:
            return byte_offset
        return max(0, bisect_right(self._byte_offsets, byte_offset) - 1)
