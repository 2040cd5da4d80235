"""
Parsing and validation of HH:MM reminder times (24-hour clock).
"""
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, NamedTuple, Union

from .exceptions import NoValidTimes


_TIME_RE = re.compile(r"([01]?\d|2[0-3]):([0-5]\d)", re.ASCII)


class TimeSpec(NamedTuple):
    """A validated wall-clock time of day."""

    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class InvalidFormat:
    raw: Any
    reason: str


@dataclass
class FilteredTimes:
    times: List[TimeSpec] = field(default_factory=list)
    dropped: int = 0
    rejected: List[str] = field(default_factory=list)

    def as_strings(self) -> List[str]:
        return [str(t) for t in self.times]


def parse_time_spec(raw: Any) -> Union[TimeSpec, InvalidFormat]:
    """Parse ``H:MM`` / ``HH:MM``. Returns ``InvalidFormat`` instead of raising."""
    if not isinstance(raw, str):
        return InvalidFormat(raw, "not a string")
    match = _TIME_RE.fullmatch(raw)
    if not match:
        return InvalidFormat(raw, "expected H:MM or HH:MM on a 24-hour clock")
    return TimeSpec(int(match.group(1)), int(match.group(2)))


def filter_valid(raws: Iterable[Any]) -> FilteredTimes:
    """Keep valid, unique times in input order and count what was dropped."""
    result = FilteredTimes()
    seen = set()
    for raw in raws or []:
        parsed = parse_time_spec(raw)
        if isinstance(parsed, InvalidFormat):
            result.dropped += 1
            result.rejected.append(str(raw))
            continue
        if parsed in seen:
            continue
        seen.add(parsed)
        result.times.append(parsed)
    return result


def require_valid(raws: Iterable[Any]) -> FilteredTimes:
    result = filter_valid(raws)
    if not result.times:
        raise NoValidTimes(result.rejected)
    return result
