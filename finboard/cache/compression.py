"""
Cache Compression Utilities

Analytics payloads are JSON. Small views (summary) are stored as-is; large
ones (distribution, highest records for busy tenants) are compressed.
Every stored value carries a 1-byte marker so readers know how to decode it.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard


logger = logging.getLogger(__name__)


# Compression type markers (1-byte prefix)
MARKER_UNCOMPRESSED = b'\x00'
MARKER_LZ4 = b'\x01'
MARKER_ZSTD = b'\x02'


@dataclass
class CompressionStats:
    """Track compression statistics."""
    original_size: int
    compressed_size: int
    algorithm: str

    @property
    def savings(self) -> int:
        return self.original_size - self.compressed_size


class CacheCompressor:
    """
    Handles compression/decompression of cache entries.

    LZ4 for entries above `threshold`, ZSTD for entries above
    `use_zstd_threshold`. Compression is skipped when it does not shrink
    the payload.
    """

    def __init__(
        self,
        enabled: bool = True,
        threshold: int = 1024,
        use_zstd_threshold: int = 102400,
    ):
        self.enabled = enabled
        self.threshold = threshold
        self.use_zstd_threshold = use_zstd_threshold
        self._zstd_compressor = zstandard.ZstdCompressor(level=3)
        self._zstd_decompressor = zstandard.ZstdDecompressor()

    def compress(self, data: bytes) -> Tuple[bytes, Optional[CompressionStats]]:
        """
        Compress data if beneficial.

        Returns:
            Tuple of (marked_data, stats) where stats is None when stored raw
        """
        if not self.enabled or len(data) < self.threshold:
            return MARKER_UNCOMPRESSED + data, None

        if len(data) >= self.use_zstd_threshold:
            compressed = self._zstd_compressor.compress(data)
            marker = MARKER_ZSTD
            algorithm = "zstd"
        else:
            compressed = lz4.frame.compress(data)
            marker = MARKER_LZ4
            algorithm = "lz4"

        if len(compressed) >= len(data):
            return MARKER_UNCOMPRESSED + data, None

        stats = CompressionStats(
            original_size=len(data),
            compressed_size=len(compressed) + 1,
            algorithm=algorithm,
        )
        return marker + compressed, stats

    def decompress(self, data: bytes) -> bytes:
        """
        Strip the marker and decompress.

        Raises:
            ValueError: Unknown marker byte
        """
        if not data:
            return data

        marker = data[0:1]
        payload = data[1:]

        if marker == MARKER_UNCOMPRESSED:
            return payload
        if marker == MARKER_LZ4:
            return lz4.frame.decompress(payload)
        if marker == MARKER_ZSTD:
            return self._zstd_decompressor.decompress(payload)

        raise ValueError(f"Unknown compression marker: {marker!r}")


def _default_handler(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to JSON bytes for caching."""
    return json.dumps(value, default=_default_handler, ensure_ascii=False).encode("utf-8")


def deserialize_value(data: bytes) -> Any:
    """Deserialize JSON bytes back to a Python value."""
    if not data:
        return None
    return json.loads(data.decode("utf-8"))
