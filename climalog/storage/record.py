"""
Fixed-width binary record format shared by the sensor link and the log file.

Each record is 10 bytes, little-endian:

    [0:4]  u32  unix seconds
    [4:6]  i16  max temperature (centi-degrees)
    [6]    u8   max humidity (%)
    [7:9]  i16  min temperature (centi-degrees)
    [9]    u8   min humidity (%)
"""

import struct
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import List

RECORD_FORMAT = struct.Struct('<IhBhB')
RECORD_SIZE = RECORD_FORMAT.size  # 10


class RecordError(Exception):
    """Base exception for record encoding and decoding."""
    pass


class MalformedRecord(RecordError):
    """Raised when bytes cannot be a record or a reading cannot be encoded."""
    pass


@dataclass(frozen=True)
class Reading:
    """One decoded sensor sample."""
    timestamp: datetime
    max_temperature: int  # centi-degrees
    min_temperature: int  # centi-degrees
    max_humidity: int     # %
    min_humidity: int     # %

    def time(self) -> datetime:
        return self.timestamp

    def extrema(self) -> 'Reading':
        return self


def decode(data: bytes, tz: tzinfo) -> Reading:
    """
    Decode one record.

    Args:
        data: Exactly RECORD_SIZE bytes
        tz: Zone the timestamp is expressed in

    Returns:
        Reading: Decoded sample

    Raises:
        MalformedRecord: If data is not exactly one record long
    """
    if len(data) != RECORD_SIZE:
        raise MalformedRecord(f"Record must be {RECORD_SIZE} bytes, got {len(data)}")

    seconds, max_temp, max_humidity, min_temp, min_humidity = RECORD_FORMAT.unpack(data)
    return Reading(
        timestamp=datetime.fromtimestamp(seconds, tz),
        max_temperature=max_temp,
        min_temperature=min_temp,
        max_humidity=max_humidity,
        min_humidity=min_humidity
    )


def encode(reading: Reading) -> bytes:
    """Encode a reading as one record; sub-second precision is dropped."""
    try:
        return RECORD_FORMAT.pack(
            int(reading.timestamp.timestamp()),
            reading.max_temperature,
            reading.max_humidity,
            reading.min_temperature,
            reading.min_humidity
        )
    except struct.error as e:
        raise MalformedRecord(f"Reading at {reading.timestamp} cannot be encoded: {e}") from e


def record_timestamp(data: bytes) -> int:
    """Embedded unix seconds of a record, without decoding the rest."""
    if len(data) != RECORD_SIZE:
        raise MalformedRecord(f"Record must be {RECORD_SIZE} bytes, got {len(data)}")
    return struct.unpack_from('<I', data)[0]


def decode_log(data: bytes, tz: tzinfo) -> List[Reading]:
    """
    Decode a whole log buffer.

    Raises:
        MalformedRecord: If the buffer ends with a partial record
    """
    if len(data) % RECORD_SIZE:
        raise MalformedRecord(
            f"Log is {len(data)} bytes, trailing {len(data) % RECORD_SIZE} bytes "
            f"do not form a {RECORD_SIZE}-byte record"
        )
    return [decode(data[offset:offset + RECORD_SIZE], tz)
            for offset in range(0, len(data), RECORD_SIZE)]
