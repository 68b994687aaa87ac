"""Stream decoding, snapshot reconstruction and turn orchestration."""

from .event_decoder import DecodedEvent, EventDecoder
from .event_log import ChatEventLogger, TurnLogRun
from .interrupts import InterruptController, TurnDecision, TurnMode
from .orchestrator import TurnConfig, TurnOrchestrator
from .reconstruction import StreamReconstructor

# Snapshot and record types
from .types import (
    Progress,
    ProgressStage,
    Snapshot,
    ToolCallRecord,
    TurnCompletion,
)

__all__ = [
    "ChatEventLogger",
    "DecodedEvent",
    "EventDecoder",
    "InterruptController",
    "Progress",
    "ProgressStage",
    "Snapshot",
    "StreamReconstructor",
    "ToolCallRecord",
    "TurnCompletion",
    "TurnConfig",
    "TurnDecision",
    "TurnLogRun",
    "TurnMode",
    "TurnOrchestrator",
]
