"""Column types shared by the table models."""
from sqlalchemy import types
from sqlalchemy.types import TypeDecorator

from catalog_sync.models.envelope import as_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes in a plain DATETIME column.

    Values are converted to UTC and stored without tzinfo, so existing rows
    and SQLite (which has no timezone type) keep working. Rows read back
    carry timezone.utc. A naive value on the way in is taken to be UTC.
    """

    impl = types.DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)
