"""Custom SQLAlchemy types."""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator, Text

from opshub.core.encryption import decrypt_secret, encrypt_secret

# Schemaless JSON bag; JSONB (indexable) on PostgreSQL.
JSONBag = JSON().with_variant(JSONB(), "postgresql")

# Same, but Python None is stored as SQL NULL rather than JSON 'null'.
NullableJSONBag = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class EncryptedString(TypeDecorator):
    """Text column sealed with the data key; reads return plaintext."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        if value == "":
            return ""
        return encrypt_secret(value)

    def process_result_value(self, value, dialect):
        if value is None or value == "":
            return value
        return decrypt_secret(value)
