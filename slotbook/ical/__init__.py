"""
iCalendar codec - encoding records to text and decoding text to records.
"""

from .decoder import ICalDecoder, RawPropertyMap, parse_ical_datetime
from .encoder import EncodeResult, ICalEncoder, SkippedRecord

__all__ = [
    "ICalDecoder",
    "ICalEncoder",
    "EncodeResult",
    "RawPropertyMap",
    "SkippedRecord",
    "parse_ical_datetime",
]
