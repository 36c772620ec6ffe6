"""Byte-level builders for the MP3 fixtures used across the tests."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

# MPEG-1 Layer III, 128 kbps, 44.1 kHz, stereo, no padding
CBR_128_HEADER = bytes([0xFF, 0xFB, 0x90, 0x00])
CBR_128_FRAME_LENGTH = 417


def synchsafe_bytes(value: int) -> bytes:
    return bytes([(value >> 21) & 0x7F, (value >> 14) & 0x7F, (value >> 7) & 0x7F, value & 0x7F])


def text_payload(text: str, encoding: int = 0) -> bytes:
    if encoding == 0:
        return b"\x00" + text.encode("latin-1")
    if encoding == 1:
        return b"\x01" + text.encode("utf-16") + b"\x00\x00"
    if encoding == 2:
        return b"\x02" + text.encode("utf-16-be") + b"\x00\x00"
    return b"\x03" + text.encode("utf-8") + b"\x00"


def id3_tag(frames: Dict[str, str], *, version: int = 3, encoding: int = 0, padding: int = 0) -> bytes:
    body = b""
    for frame_id, text in frames.items():
        payload = text_payload(text, encoding)
        if version == 2:
            body += frame_id.encode("latin-1") + len(payload).to_bytes(3, "big") + payload
        elif version == 4:
            body += frame_id.encode("latin-1") + synchsafe_bytes(len(payload)) + b"\x00\x00" + payload
        else:
            body += frame_id.encode("latin-1") + len(payload).to_bytes(4, "big") + b"\x00\x00" + payload
    body += b"\x00" * padding
    return b"ID3" + bytes([version, 0, 0]) + synchsafe_bytes(len(body)) + body


def cbr_audio(size: int) -> bytes:
    """``size`` bytes of 128 kbps audio starting with a frame sync."""
    frame = CBR_128_HEADER + b"\x00" * (CBR_128_FRAME_LENGTH - len(CBR_128_HEADER))
    repeats = size // len(frame) + 1
    return (frame * repeats)[:size]


def xing_audio(frame_count: int, *, marker: bytes = b"Xing", extra_frames: int = 10) -> bytes:
    first = bytearray(CBR_128_HEADER + b"\x00" * (CBR_128_FRAME_LENGTH - len(CBR_128_HEADER)))
    first[36:40] = marker
    first[40:44] = (0x01).to_bytes(4, "big")
    first[44:48] = frame_count.to_bytes(4, "big")
    return bytes(first) + cbr_audio(CBR_128_FRAME_LENGTH * extra_frames)


def vbri_audio(frame_count: int) -> bytes:
    first = bytearray(CBR_128_HEADER + b"\x00" * (CBR_128_FRAME_LENGTH - len(CBR_128_HEADER)))
    first[36:40] = b"VBRI"
    first[50:54] = frame_count.to_bytes(4, "big")
    return bytes(first) + cbr_audio(CBR_128_FRAME_LENGTH * 10)


def write_mp3(
    path: Path,
    *,
    artist: str = "",
    title: str = "",
    album: str = "",
    track: str = "",
    album_artist: str = "",
    year: str = "",
    genre: str = "",
    audio_bytes: int = CBR_128_FRAME_LENGTH * 20,
    modified: Optional[datetime] = None,
) -> Path:
    frames = {
        frame_id: value
        for frame_id, value in (
            ("TPE1", artist),
            ("TPE2", album_artist),
            ("TIT2", title),
            ("TALB", album),
            ("TRCK", track),
            ("TYER", year),
            ("TCON", genre),
        )
        if value
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(id3_tag(frames, padding=16) + cbr_audio(audio_bytes))
    if modified is not None:
        stamp = modified.timestamp()
        os.utime(path, (stamp, stamp))
    return path
