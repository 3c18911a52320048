"""Column types shared by the ORM models.

Classes:
    UTCDateTime: DateTime column that stores UTC and always loads UTC-aware values.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from chat_recall.utils.datetime_utils import as_utc


class UTCDateTime(TypeDecorator):
    """SQLite keeps no offset, so values are written as naive UTC and tagged UTC on load."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return as_utc(value)
