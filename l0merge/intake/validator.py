"""
Packet validity predicate.

Goal: fast, side-effect-free checks on an already framed packet. A packet
takes part in ordering and redundancy decisions only if its apid lies in
the instrument's reserved range AND its total length is one of the
permitted fixed sizes. Everything else is either ignored or, when it
carries the distinguished side-channel apid, forwarded verbatim.
"""

from __future__ import annotations

from ..config import MergeConfig
from .packet import PacketView


def is_instrument_apid(apid: int, config: MergeConfig) -> bool:
    return config.apid_min <= apid <= config.apid_max


def is_merge_candidate(packet: PacketView, config: MergeConfig) -> bool:
    """True if `packet` may be ordered, compared and emitted to the primary output."""
    return (
        is_instrument_apid(packet.apid, config)
        and packet.length in config.permitted_packet_sizes
    )


def is_side_channel(packet: PacketView, config: MergeConfig) -> bool:
    """True if `packet` should be forwarded to the auxiliary sink instead."""
    if config.side_channel_apid is None:
        return False
    if is_merge_candidate(packet, config):
        return False
    return packet.apid == config.side_channel_apid
