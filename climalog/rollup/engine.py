"""
Hierarchical min/max rollup of sensor readings.

One bucket-and-reduce pass groups a time-ordered sequence into Summary nodes;
applying it three times turns readings into Day, Month and Year trees.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from functools import reduce
from itertools import groupby
from typing import Callable, Generic, Hashable, Iterable, Iterator, List, Protocol, Tuple, TypeVar

from ..storage.record import Reading, decode_log

logger = logging.getLogger(__name__)


class SummaryItem(Protocol):
    """Anything the rollup can group: a raw reading or an already built summary."""

    def time(self) -> datetime:
        ...

    def extrema(self) -> Reading:
        ...


T = TypeVar('T', bound=SummaryItem)

BucketFn = Callable[[datetime, tzinfo], Hashable]


@dataclass(frozen=True)
class Summary(Generic[T]):
    """Aggregate over a contiguous run of same-bucket children."""
    summary: Reading
    details: Tuple[T, ...]

    def time(self) -> datetime:
        return self.summary.timestamp

    def extrema(self) -> Reading:
        return self.summary

    def leaves(self) -> Iterator[Reading]:
        """Readings beneath this node in document order."""
        for child in self.details:
            if isinstance(child, Summary):
                yield from child.leaves()
            else:
                yield child


Day = Summary[Reading]
Month = Summary[Day]
Year = Summary[Month]


def day_key(instant: datetime, tz: tzinfo) -> Hashable:
    local = instant.astimezone(tz)
    return local.year, local.month, local.day


def month_key(instant: datetime, tz: tzinfo) -> Hashable:
    local = instant.astimezone(tz)
    return local.year, local.month


def year_key(instant: datetime, tz: tzinfo) -> Hashable:
    return instant.astimezone(tz).year


def merge_extrema(current: Reading, other: Reading) -> Reading:
    """Element-wise max/min; associative, so nesting levels compose."""
    return Reading(
        timestamp=current.timestamp,
        max_temperature=max(current.max_temperature, other.max_temperature),
        min_temperature=min(current.min_temperature, other.min_temperature),
        max_humidity=max(current.max_humidity, other.max_humidity),
        min_humidity=min(current.min_humidity, other.min_humidity)
    )


def rollup(items: Iterable[T], bucket: BucketFn, tz: tzinfo) -> List[Summary[T]]:
    """
    Group contiguous items sharing a bucket key and reduce each group.

    Items must already be ascending by time(); a key that reappears after a
    different one starts a new group.

    Args:
        items: Readings or summaries, ascending by time()
        bucket: Maps an instant to a calendar key in tz
        tz: Zone the calendar keys are computed in

    Returns:
        List[Summary[T]]: One node per run, in input order
    """
    groups = []
    for _, run in groupby(items, key=lambda item: bucket(item.time(), tz)):
        children = tuple(run)
        seed = children[0].extrema()
        aggregate = reduce(merge_extrema, (child.extrema() for child in children[1:]), seed)
        groups.append(Summary(
            summary=Reading(
                timestamp=children[0].time(),
                max_temperature=aggregate.max_temperature,
                min_temperature=aggregate.min_temperature,
                max_humidity=aggregate.max_humidity,
                min_humidity=aggregate.min_humidity
            ),
            details=children
        ))
    return groups


def summarize(readings: Iterable[Reading], tz: tzinfo) -> List[Year]:
    """Build the Year forest; out-of-order input is stably sorted first."""
    readings = list(readings)
    if any(later.time() < earlier.time() for earlier, later in zip(readings, readings[1:])):
        logger.warning(f"Readings are not in ascending time order, sorting {len(readings)} readings")
        readings.sort(key=lambda reading: reading.time())

    days = rollup(readings, day_key, tz)
    months = rollup(days, month_key, tz)
    return rollup(months, year_key, tz)


def summarize_log(data: bytes, tz: tzinfo) -> List[Year]:
    """Decode a raw log buffer and summarize it."""
    return summarize(decode_log(data, tz), tz)
