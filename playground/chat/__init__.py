"""
Chat Engine Module

Streaming conversation engine with version history.
"""

from .conversation_store import ConversationStore, derive_title
from .delta_accumulator import DeltaAccumulator
from .frame_decoder import FrameDecoder
from .models import ChatRequest, Direction, StoreEvent, StreamState
from .streaming_handler import ChatTransport, StreamSession
from .version_history import VersionHistory

__all__ = [
    "ChatRequest",
    "ChatTransport",
    "ConversationStore",
    "DeltaAccumulator",
    "Direction",
    "FrameDecoder",
    "StoreEvent",
    "StreamSession",
    "StreamState",
    "VersionHistory",
    "derive_title",
]
