"""
l0merge: gap-aware merge of redundant telemetry packet captures.

Public API (stable):
- MergeConfig          (configuration)
- run_merge            (orchestrates one merge run)
- PacketStream         (windowed packet framing over one input file)
- order_streams        (processing order by first packet time)
- MergeResolver        (overlap / gap state machine)
- BlockSink            (block-granular output sink)
- render_constructor   (384-byte constructor record)
- PacketSinkPort, TimeCodeTranslator (ports)
- DTOs: Checkpoint, MergeCursor, GapReport, StreamResult, MergeSummary

This package intentionally exposes a small surface area so callers can
wire inputs and outputs without depending on internals.
"""

from __future__ import annotations

# Configuration
from .config import MergeConfig

# Orchestration
from .orchestration.runner import run_merge

# Components
from .intake.packet_stream import PacketStream
from .pipeline.constructor import render as render_constructor
from .pipeline.emitter import BlockSink
from .pipeline.ordering import order_streams
from .pipeline.resolver import MergeResolver

# Ports
from .ports import PacketSinkPort, TimeCodeTranslator

# Errors
from .errors import CannotOpen, MergeError, NoValidInput, SeekFailure, TooManyInputs, WriteFailure

# DTOs
from .dto import (
    Checkpoint,
    GapReport,
    MergeCursor,
    MergeSummary,
    StreamResult,
)

__version__ = "0.1.0"

__all__ = [
    "MergeConfig",
    "run_merge",
    "PacketStream",
    "render_constructor",
    "BlockSink",
    "order_streams",
    "MergeResolver",
    "PacketSinkPort",
    "TimeCodeTranslator",
    "CannotOpen",
    "MergeError",
    "NoValidInput",
    "SeekFailure",
    "TooManyInputs",
    "WriteFailure",
    "Checkpoint",
    "GapReport",
    "MergeCursor",
    "MergeSummary",
    "StreamResult",
]
