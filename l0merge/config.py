"""
Configuration schema for the packet merge run.

Keep this lean and opinionated: only the knobs needed by framing
(window and chunk sizes, length bounds), the validity predicate
(apid range and permitted packet sizes), the side-channel filter and
block-granular emission.
"""

from __future__ import annotations

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

# Fixed header overhead: declared length field + 7 = total packet length.
PRIMARY_HEADER_SIZE = 6
TIME_SIZE = 8
TIME_OFFSET = PRIMARY_HEADER_SIZE

NIGHT_PACKET_SIZE = 276
DAY_PACKET_SIZE = 642


class MergeConfig(BaseModel):
    """
    Centralized, validated configuration for one merge run.
    All sizes are in bytes.
    """

    # === Framing window ===
    prefetch_size: int = Field(
        default=32768,
        ge=PRIMARY_HEADER_SIZE,
        description="Bytes read when a stream is opened, before the first scan.",
    )
    read_size: int = Field(
        default=8 * 32768,
        ge=1024,
        description="Refill chunk size (R); the window holds R + max_packet_length bytes.",
    )
    max_packet_length: int = Field(
        default=8 * 32768,
        description="Declared packet lengths above this are treated as framing corruption.",
    )
    min_packet_length: int = Field(
        default=PRIMARY_HEADER_SIZE + TIME_SIZE,
        ge=PRIMARY_HEADER_SIZE + 1,
        description="Declared packet lengths below this cannot carry a timestamp.",
    )

    # === Emission ===
    write_block_size: int = Field(
        default=8 * 32768,
        ge=1,
        description="Every physical write except the last one is exactly this long.",
    )

    # === Validity predicate ===
    permitted_packet_sizes: Tuple[int, ...] = Field(
        default=(NIGHT_PACKET_SIZE, DAY_PACKET_SIZE),
        min_length=1,
        description="Total lengths a merge candidate may have (night / day packets).",
    )
    apid_min: int = Field(default=64, ge=0, le=0x7FF)
    apid_max: int = Field(default=127, ge=0, le=0x7FF)

    # === Side channel ===
    side_channel_apid: Optional[int] = Field(
        default=957,
        ge=0,
        le=0x7FF,
        description="Packets with this apid that fail the validity predicate go to the side-channel sink.",
    )

    # === Inputs ===
    max_input_files: int = Field(default=100, ge=1)
    skip_unopenable_inputs: bool = Field(
        default=False,
        description="Log and skip an input that cannot be opened instead of aborting the run.",
    )

    # === Diagnostics ===
    time_code: Literal["hex", "cds"] = Field(
        default="hex",
        description="How timestamps are rendered in log messages; never used for comparisons.",
    )

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _check_sizes(self) -> "MergeConfig":
        if self.apid_min > self.apid_max:
            raise ValueError("apid_min must not exceed apid_max")
        if self.min_packet_length > self.max_packet_length:
            raise ValueError("min_packet_length must not exceed max_packet_length")
        if max(self.permitted_packet_sizes) > self.max_packet_length:
            raise ValueError("max_packet_length must cover every permitted packet size")
        if min(self.permitted_packet_sizes) < self.min_packet_length:
            raise ValueError("permitted packet sizes must be at least min_packet_length")
        if self.prefetch_size > self.window_capacity:
            raise ValueError("prefetch_size must fit in the window")
        return self

    @property
    def window_capacity(self) -> int:
        """Bytes held by one stream window: one refill chunk plus the largest legal packet."""
        return self.read_size + self.max_packet_length

    @property
    def min_permitted_size(self) -> int:
        return min(self.permitted_packet_sizes)
