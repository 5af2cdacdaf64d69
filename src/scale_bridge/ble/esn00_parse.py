"""
Etekcity ESN00 notification frame parser
Based on the metekcity reverse engineering notes and captures from a live scale

The scale notifies on characteristic 0x2C12 with frames of two lengths:
- 8 bytes: heartbeat sent while the platform is empty, no weight payload
- 12 bytes: weight payload

There is no authoritative layout for the 12-byte frame, so two extractors are
tried in order and the first plausible value wins:
- Fixed offset: sign byte, 16-bit little-endian magnitude, optional unit byte
  (the layout verified on the related Luminary scales)
- Window scan: 16-bit big-endian value followed by a unit code, sign in the
  byte before and a stability flag two bytes after

Unit codes:
- 0: grams
- 1: lb:oz (reported as ounces)
- 2: grams x10
- 3: fluid ounces
- 4: milliliters
- 5: fluid ounces (milk)
- 6: ounces
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, Optional, Sequence

from ..models import Reading, UnitKind

logger = logging.getLogger(__name__)

EMPTY_FRAME_LENGTH = 8
WEIGHT_FRAME_LENGTH = 12

UNIT_CODES: Dict[int, UnitKind] = {
    0: UnitKind.GRAM,
    1: UnitKind.OUNCE,
    2: UnitKind.GRAM,
    3: UnitKind.FLUID_OUNCE,
    4: UnitKind.MILLILITER,
    5: UnitKind.FLUID_OUNCE,
    6: UnitKind.OUNCE,
}
SCALED_GRAM_CODE = 2
MAX_UNIT_CODE = 6

# Acceptance bounds, all upper bounds exclusive unless noted
FIXED_MAX_MAGNITUDE = 50000
SCAN_MAX_RAW = 10000
SCAN_MAX_WEIGHT = 5000.0  # inclusive


@dataclass(frozen=True)
class FixedOffsetLayout:
    """Byte offsets for the fixed-offset extractor."""

    sign_offset: int = 9
    magnitude_offset: int = 10
    unit_offset: int = 12


DEFAULT_LAYOUT = FixedOffsetLayout()


@dataclass(frozen=True)
class Candidate:
    """Weight extracted from a frame, before it is timestamped."""

    weight: float
    unit: UnitKind
    is_stable: bool
    strategy: str


Extractor = Callable[[bytes], Optional[Candidate]]


def unit_for_code(code: int) -> UnitKind:
    """Map a unit code to a UnitKind, defaulting to grams."""
    return UNIT_CODES.get(code, UnitKind.GRAM)


def extract_fixed_offset(
    frame: bytes, layout: FixedOffsetLayout = DEFAULT_LAYOUT
) -> Optional[Candidate]:
    """
    Read sign, magnitude and unit from fixed positions.

    The unit byte is optional: when the frame ends before ``layout.unit_offset``
    the reading is reported in grams. Readings from this layout carry no
    stability flag and are reported as stable.
    """
    end = layout.magnitude_offset + 2
    if layout.sign_offset >= len(frame) or end > len(frame):
        return None

    magnitude = struct.unpack_from("<H", frame, layout.magnitude_offset)[0]
    if not 0 < magnitude < FIXED_MAX_MAGNITUDE:
        return None

    sign = 1 if frame[layout.sign_offset] == 0 else -1
    unit_code = frame[layout.unit_offset] if layout.unit_offset < len(frame) else 0
    divisor = 10 if unit_code == SCALED_GRAM_CODE else 1

    return Candidate(
        weight=sign * magnitude / divisor,
        unit=unit_for_code(unit_code),
        is_stable=True,
        strategy="fixed_offset",
    )


def extract_window_scan(frame: bytes) -> Optional[Candidate]:
    """
    Slide over the frame looking for ``<u16 BE value> <unit code>``.

    Sign comes from the byte before the value (none means positive), stability
    from the byte after the unit code. Unit code 2 and codes 3 and above are
    reported in tenths.
    """
    for offset in range(len(frame) - 3):
        raw = struct.unpack_from(">H", frame, offset)[0]
        unit_code = frame[offset + 2]
        if not (0 < raw < SCAN_MAX_RAW and unit_code <= MAX_UNIT_CODE):
            continue

        sign = 1 if offset == 0 or frame[offset - 1] == 0 else -1
        # Absent flag counts as stable; not yet confirmed against hardware
        stable_index = offset + 3
        is_stable = frame[stable_index] == 1 if stable_index < len(frame) else True
        divisor = 10 if unit_code >= SCALED_GRAM_CODE else 1
        weight = sign * raw / divisor

        if 0 < weight <= SCAN_MAX_WEIGHT:
            return Candidate(
                weight=weight,
                unit=unit_for_code(unit_code),
                is_stable=is_stable,
                strategy=f"window_scan@{offset}",
            )

    return None


class FrameDecoder:
    """Turns raw ESN00 notification frames into Readings."""

    def __init__(
        self,
        layout: FixedOffsetLayout = DEFAULT_LAYOUT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.layout = layout
        self._clock = clock
        self.extractors: Sequence[Extractor] = (
            partial(extract_fixed_offset, layout=layout),
            extract_window_scan,
        )

    def decode(self, frame: bytes) -> Optional[Reading]:
        """
        Decode one notification frame.

        Args:
            frame: Raw bytes from a single notification

        Returns:
            Reading if a plausible weight was found, None otherwise
        """
        if not isinstance(frame, (bytes, bytearray, memoryview)):
            logger.debug(f"Ignoring non-bytes frame of type {type(frame).__name__}")
            return None

        try:
            data = bytes(frame)
        except (TypeError, ValueError) as e:
            logger.debug(f"Ignoring unreadable frame buffer: {e}")
            return None

        logger.debug(f"Scale frame ({len(data)} bytes): {data.hex(' ')}")

        if len(data) == EMPTY_FRAME_LENGTH:
            return None
        if len(data) != WEIGHT_FRAME_LENGTH:
            logger.debug(f"Unexpected frame length: {len(data)} bytes")
            return None

        for extract in self.extractors:
            try:
                candidate = extract(data)
            except (struct.error, IndexError) as e:
                logger.warning(f"Frame extractor error: {e}, hex: {data.hex()}")
                continue
            if candidate is not None:
                logger.debug(
                    f"Decoded {candidate.weight} {candidate.unit.symbol} "
                    f"stable={candidate.is_stable} via {candidate.strategy}"
                )
                return Reading(
                    weight=float(candidate.weight),
                    unit=candidate.unit,
                    is_stable=candidate.is_stable,
                    observed_at=self._clock(),
                )

        logger.debug(f"No plausible weight in frame {data.hex()}")
        return None


_default_decoder = FrameDecoder()


def decode_frame(frame: bytes) -> Optional[Reading]:
    """Decode a frame with the default layout."""
    return _default_decoder.decode(frame)
