from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


class Uint256(TypeDecorator):
    """Unsigned arbitrary-precision integer column.

    Stored as NUMERIC(78, 0) on PostgreSQL and as text elsewhere, so that
    planck-denominated balances never lose precision.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0))
        return dialect.type_descriptor(String(78))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return int(value)
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)
