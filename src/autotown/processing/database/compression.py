# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Payload compression.

Raw documents are zlib-compressed before they are stored or queued.
"""

import zlib

from ...exceptions import CodecError

# Compression level (6 provides good balance: 7-10x compression ratio)
COMPRESSION_LEVEL = 6


def compress(data: bytes) -> bytes:
    """
    Compress a payload.

    Args:
        data: Raw bytes

    Returns:
        Compressed bytes

    Raises:
        CodecError: If the input is not bytes or zlib fails
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise CodecError(f"cannot compress {type(data).__name__}")
    try:
        return zlib.compress(bytes(data), COMPRESSION_LEVEL)
    except zlib.error as e:
        raise CodecError(f"compression failed: {e}") from e


def decompress(data: bytes) -> bytes:
    """
    Decompress a payload produced by :func:`compress`.

    Truncated or corrupt input raises rather than returning partial output.

    Raises:
        CodecError: If the input is not a complete zlib stream
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise CodecError(f"cannot decompress {type(data).__name__}")
    try:
        decompressor = zlib.decompressobj()
        out = decompressor.decompress(bytes(data))
        out += decompressor.flush()
    except zlib.error as e:
        raise CodecError(f"decompression failed: {e}") from e
    if not decompressor.eof:
        raise CodecError("decompression failed: truncated stream")
    if decompressor.unused_data:
        raise CodecError("decompression failed: trailing data after stream")
    return out
