from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO, Dict, Optional

from .errors import ParseError
from .models import Mp3Tags

logger = logging.getLogger(__name__)

ID3_HEADER_SIZE = 10
DEFAULT_SYNC_WINDOW = 4096
# Largest possible MPEG audio frame (Layer II, 384 kbps, 8 kHz) rounded up.
MAX_FRAME_SIZE = 4096

# Raw 2-bit version field: 0 = MPEG 2.5, 1 = reserved, 2 = MPEG 2, 3 = MPEG 1.
MPEG_1 = 3
RESERVED_VERSION = 1
# Raw 2-bit layer field: 0 = reserved, 1 = Layer III, 2 = Layer II, 3 = Layer I.
LAYER_NUMBER = (0, 3, 2, 1)
MONO = 3

_V1_L1 = (0, 32, 64, 96, 128, 160, 192, 224, 256, 288, 320, 352, 384, 416, 448, 0)
_V1_L2 = (0, 32, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 384, 0)
_V1_L3 = (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320, 0)
_V2_L1 = (0, 32, 48, 56, 64, 80, 96, 112, 128, 144, 160, 176, 192, 224, 256, 0)
_V2_L23 = (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160, 0)
_NONE = (0,) * 16

# kbps indexed by [raw version][raw layer][bitrate index]
BITRATE_KBPS = (
    (_NONE, _V2_L23, _V2_L23, _V2_L1),  # MPEG 2.5
    (_NONE, _NONE, _NONE, _NONE),  # reserved
    (_NONE, _V2_L23, _V2_L23, _V2_L1),  # MPEG 2
    (_NONE, _V1_L3, _V1_L2, _V1_L1),  # MPEG 1
)

# Hz indexed by [raw version][sample rate index]
SAMPLE_RATE_HZ = (
    (11025, 12000, 8000, 0),
    (0, 0, 0, 0),
    (22050, 24000, 16000, 0),
    (44100, 48000, 32000, 0),
)

# indexed by [raw version][raw layer]
SAMPLES_PER_FRAME = (
    (0, 576, 1152, 384),
    (0, 0, 0, 0),
    (0, 576, 1152, 384),
    (0, 1152, 1152, 384),
)

VBRI_OFFSET = 36
VBRI_FRAMES_OFFSET = 14
XING_FRAMES_FLAG = 0x01

# Frame id -> Mp3Tags field, ID3v2.2 uses three character ids.
FRAME_FIELDS_V22 = {
    "TP1": "artist",
    "TP2": "album_artist",
    "TT2": "title",
    "TAL": "album",
    "TRK": "track",
    "TYE": "year",
    "TCO": "genre",
}
FRAME_FIELDS = {
    "TPE1": "artist",
    "TPE2": "album_artist",
    "TIT2": "title",
    "TALB": "album",
    "TRCK": "track",
    "TYER": "year",
    "TDRC": "year",
    "TCON": "genre",
}


@dataclass(slots=True)
class FrameHeader:
    version: int
    layer: int
    bitrate_index: int
    sample_rate_index: int
    padding: int
    channel_mode: int

    @classmethod
    def parse(cls, header: bytes) -> "FrameHeader":
        if len(header) < 4 or header[0] != 0xFF or (header[1] & 0xE0) != 0xE0:
            raise ParseError("missing MPEG frame sync")
        return cls(
            version=(header[1] >> 3) & 0x03,
            layer=(header[1] >> 1) & 0x03,
            bitrate_index=(header[2] >> 4) & 0x0F,
            sample_rate_index=(header[2] >> 2) & 0x03,
            padding=(header[2] >> 1) & 0x01,
            channel_mode=(header[3] >> 6) & 0x03,
        )

    @property
    def bitrate(self) -> int:
        """Bitrate in bits per second."""
        return BITRATE_KBPS[self.version][self.layer][self.bitrate_index] * 1000

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE_HZ[self.version][self.sample_rate_index]

    @property
    def samples_per_frame(self) -> int:
        return SAMPLES_PER_FRAME[self.version][self.layer]

    @property
    def valid(self) -> bool:
        return (
            self.version != RESERVED_VERSION
            and self.layer != 0
            and self.bitrate > 0
            and self.sample_rate > 0
        )

    @property
    def frame_length(self) -> int:
        if not self.valid:
            return 0
        if LAYER_NUMBER[self.layer] == 1:
            return ((12 * self.bitrate) // self.sample_rate + self.padding) * 4
        return (self.samples_per_frame // 8) * self.bitrate // self.sample_rate + self.padding

    def xing_offsets(self) -> tuple[int, ...]:
        # 4 header bytes followed by the layer III side information block.
        if self.version == MPEG_1:
            preferred = 21 if self.channel_mode == MONO else 36
        else:
            preferred = 13 if self.channel_mode == MONO else 21
        return tuple(dict.fromkeys((preferred, 36, 21, 13)))


def synchsafe(data: bytes) -> int:
    value = 0
    for byte in data:
        value = (value << 7) | (byte & 0x7F)
    return value


def decode_text(payload: bytes) -> str:
    """Decode an ID3 text frame payload using its leading encoding byte."""
    if not payload:
        return ""
    encoding, body = payload[0], payload[1:]
    if encoding == 0:
        text = body.decode("latin-1")
    elif encoding == 3:
        text = body.decode("utf-8", errors="replace")
    elif encoding == 1:
        text = body.decode("utf-16", errors="replace")
    elif encoding == 2:
        text = body.decode("utf-16-be", errors="replace")
    else:
        raise ParseError(f"unknown text encoding {encoding}")
    return text.split("\x00")[0].strip()


class TagCodec:
    """Reads the handful of ID3 frames the library needs plus the play length of an MP3 stream."""

    def __init__(self, sync_window: int = DEFAULT_SYNC_WINDOW) -> None:
        self.sync_window = sync_window

    def read(self, stream: BinaryIO, length: Optional[int] = None) -> Mp3Tags:
        """Return best-effort tags; never raises.

        ``length`` is the full size of the file when ``stream`` only holds a prefix of it.
        """
        tags = Mp3Tags()
        try:
            if length is None:
                length = _stream_length(stream)
            tags.length = self._parse(stream, length, tags)
        except Exception as exc:
            logger.debug("Failed to parse MP3 stream: %s", exc)
            tags.length = timedelta()
        return tags

    def prefix_length(self, header: bytes) -> int:
        """Number of leading bytes needed to parse a file starting with ``header``."""
        audio_probe = self.sync_window + MAX_FRAME_SIZE
        if len(header) >= ID3_HEADER_SIZE and header[:3] == b"ID3":
            return ID3_HEADER_SIZE + synchsafe(header[6:10]) + audio_probe
        return audio_probe

    def _parse(self, stream: BinaryIO, length: int, tags: Mp3Tags) -> timedelta:
        header = stream.read(ID3_HEADER_SIZE)
        if len(header) < ID3_HEADER_SIZE:
            raise ParseError("stream too short for a header")
        audio_start = 0
        if header[:3] == b"ID3":
            major = header[3]
            flags = header[5]
            region_end = ID3_HEADER_SIZE + synchsafe(header[6:10])
            if region_end > length:
                raise ParseError("ID3 region is truncated")
            if flags & 0x40 and major >= 3:
                self._skip_extended_header(stream, major)
            frames = self._read_frames(stream, major, region_end)
            for field_name, payload in frames.items():
                setattr(tags, field_name, decode_text(payload))
            audio_start = region_end
        else:
            logger.debug("No ID3 header, looking for audio at start of stream")
        stream.seek(audio_start)
        return self._duration(stream, length)

    @staticmethod
    def _skip_extended_header(stream: BinaryIO, major: int) -> None:
        raw = _read_exact(stream, 4)
        if major == 4:
            # v2.4 size includes the size bytes themselves
            stream.seek(synchsafe(raw) - 4, io.SEEK_CUR)
        else:
            stream.seek(int.from_bytes(raw, "big"), io.SEEK_CUR)

    @staticmethod
    def _read_frames(stream: BinaryIO, major: int, region_end: int) -> Dict[str, bytes]:
        if major == 2:
            wanted, id_size, size_size, header_size = FRAME_FIELDS_V22, 3, 3, 6
        else:
            wanted, id_size, size_size, header_size = FRAME_FIELDS, 4, 4, 10
        remaining = set(wanted.values())
        found: Dict[str, bytes] = {}
        while remaining and stream.tell() + header_size <= region_end:
            frame_header = _read_exact(stream, header_size)
            if frame_header[0] == 0:
                break
            frame_id = frame_header[:id_size].decode("latin-1")
            raw_size = frame_header[id_size : id_size + size_size]
            size = synchsafe(raw_size) if major == 4 else int.from_bytes(raw_size, "big")
            if stream.tell() + size > region_end:
                raise ParseError(f"frame {frame_id!r} overruns the ID3 region")
            field_name = wanted.get(frame_id)
            if field_name in remaining:
                found[field_name] = _read_exact(stream, size)
                remaining.discard(field_name)
            else:
                stream.seek(size, io.SEEK_CUR)
        return found

    def _duration(self, stream: BinaryIO, length: int) -> timedelta:
        search_start = stream.tell()
        window = stream.read(self.sync_window + 3)
        for index in range(len(window) - 3):
            if window[index] != 0xFF or (window[index + 1] & 0xE0) != 0xE0:
                continue
            frame = FrameHeader.parse(window[index : index + 4])
            if not frame.valid:
                continue
            frame_start = search_start + index
            stream.seek(frame_start)
            payload = stream.read(frame.frame_length)
            return self._frame_duration(frame, payload, length - frame_start)
        logger.debug(
            "MP3 frame not found between %d and %d", search_start, search_start + len(window)
        )
        return timedelta()

    @staticmethod
    def _frame_duration(frame: FrameHeader, payload: bytes, remaining: int) -> timedelta:
        frame_count = _vbr_frame_count(frame, payload)
        if frame_count:
            seconds = frame_count * frame.samples_per_frame // frame.sample_rate
            encoding = "VBR"
        else:
            seconds = max(remaining, 0) * 8 // frame.bitrate
            encoding = "CBR"
        logger.debug(
            "Layer %d, %d bps, %d Hz, frame %d bytes, %s, %ds",
            LAYER_NUMBER[frame.layer],
            frame.bitrate,
            frame.sample_rate,
            frame.frame_length,
            encoding,
            seconds,
        )
        return timedelta(seconds=seconds)


def _vbr_frame_count(frame: FrameHeader, payload: bytes) -> int:
    for offset in frame.xing_offsets():
        marker = payload[offset : offset + 4]
        if marker in (b"Xing", b"Info"):
            flags = _big_endian(payload, offset + 4)
            if flags is not None and flags & XING_FRAMES_FLAG:
                return _big_endian(payload, offset + 8) or 0
            return 0
    if payload[VBRI_OFFSET : VBRI_OFFSET + 4] == b"VBRI":
        return _big_endian(payload, VBRI_OFFSET + VBRI_FRAMES_OFFSET) or 0
    return 0


def _big_endian(data: bytes, offset: int) -> Optional[int]:
    chunk = data[offset : offset + 4]
    if len(chunk) < 4:
        return None
    return int.from_bytes(chunk, "big")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise ParseError(f"expected {size} bytes, got {len(data)}")
    return data


def _stream_length(stream: BinaryIO) -> int:
    position = stream.tell()
    stream.seek(0, io.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size
