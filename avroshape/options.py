"""Per-job conversion options shared by inference, encoding and decoding."""

import datetime
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class OnBadRecords(Enum):
    """How to handle a record that cannot be encoded or decoded."""
    ERROR = 'ERROR'  # raise on the first bad record
    WARN = 'WARN'  # log a warning and skip the record
    SKIP = 'SKIP'  # skip the record silently


DEFAULT_TRUE_VALUES = ["t", "true", "enabled", "1", "on", "yes"]
DEFAULT_FALSE_VALUES = ["f", "false", "disabled", "0", "off", "no", ""]
DEFAULT_NULL_VALUES = [
    "", "#N/A", "#N/A N/A", "#NA", "-1.#IND", "-1.#QNAN", "-NaN",
    "1.#IND", "1.#QNAN", "NA", "n/a", "nan", "null"
]

UTC_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def time_zone(time_zone_id: Optional[str]) -> datetime.tzinfo:
    """Resolve a time zone id: an IANA name, a fixed offset such as +02:00, or UTC when not set."""
    if not time_zone_id or time_zone_id in ("UTC", "Z"):
        return datetime.timezone.utc
    match = UTC_OFFSET_PATTERN.match(time_zone_id)
    if match:
        sign = -1 if match.group(1) == "-" else 1
        return datetime.timezone(sign * datetime.timedelta(hours=int(match.group(2)), minutes=int(match.group(3))))
    try:
        return ZoneInfo(time_zone_id)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone '{time_zone_id}'") from e


@dataclass
class ConversionOptions:
    """Settings for one conversion job.

    Attributes:
        type_name: Name of the root record of inferred schemas
        namespace: Namespace of the root record of inferred schemas
        altnames_key: Key under which original field names are kept in 'altnames'
        rows_to_scan: Number of root values inspected by inference (0 = all)
        strict_schema: Reject input fields the schema does not declare when encoding
        strict_unknown_fields: Reject payload fields or types the supplied schema does
            not know when decoding, instead of skipping them
        on_bad_records: Policy for records that fail to encode or decode
        parse_strings: Parse text values written to non-string positions
        true_values: Text values read as true when parse_strings is set
        false_values: Text values read as false when parse_strings is set
        null_values: Text values read as null when parse_strings is set
        decimal_separator: Decimal separator of numeric text when parse_strings is set
        date_format: strptime format of date text when parse_strings is set; ISO 8601 when not set
        time_format: strptime format of time text when parse_strings is set; ISO 8601 when not set
        datetime_format: strptime format of timestamp text when parse_strings is set; ISO 8601 when not set
        time_zone_id: Zone of timestamps that carry none, and of local timestamps written
            from zoned ones; UTC when not set
        codec: Block compression codec of written container files
        sync_interval: Approximate block size of written container files
        sync_marker: Fixed 16 byte sync marker; random when not set
    """
    type_name: str = 'Document'
    namespace: str = ''
    altnames_key: str = 'json'
    rows_to_scan: int = 0
    strict_schema: bool = False
    strict_unknown_fields: bool = False
    on_bad_records: OnBadRecords = OnBadRecords.ERROR
    parse_strings: bool = False
    true_values: List[str] = field(default_factory=lambda: list(DEFAULT_TRUE_VALUES))
    false_values: List[str] = field(default_factory=lambda: list(DEFAULT_FALSE_VALUES))
    null_values: List[str] = field(default_factory=lambda: list(DEFAULT_NULL_VALUES))
    decimal_separator: str = '.'
    date_format: Optional[str] = None
    time_format: Optional[str] = None
    datetime_format: Optional[str] = None
    time_zone_id: Optional[str] = None
    codec: str = 'null'
    sync_interval: int = 16000
    sync_marker: Optional[bytes] = None

    def __post_init__(self):
        if self.rows_to_scan < 0:
            raise ValueError("rows_to_scan must be 0 (scan all) or greater")
        if isinstance(self.on_bad_records, str):
            self.on_bad_records = OnBadRecords(self.on_bad_records.upper())
        if len(self.decimal_separator) != 1:
            raise ValueError("decimal_separator must be a single character")
        if self.sync_marker is not None and len(self.sync_marker) != 16:
            raise ValueError("sync_marker must be exactly 16 bytes")
        self.tzinfo = time_zone(self.time_zone_id)
