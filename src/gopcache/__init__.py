"""
gopcache: playback-oriented GOP decode cache.

Indexes a media file into independently decodable GOPs, decodes only the GOPs
around each viewer's playback cursor, and shares decoded results between all
viewers of the same source.
"""

from gopcache.runtime.config import DecoderConfig
from gopcache.runtime.execution_context import DecodeExecutionContext, SharedExecutionContext
from gopcache.runtime.scheduler import DecodeScheduler

__version__ = "0.1.0"

__all__ = [
    "DecoderConfig",
    "DecodeExecutionContext",
    "DecodeScheduler",
    "SharedExecutionContext",
    "__version__",
]
