from datetime import datetime
from decimal import Decimal
from typing import Annotated

import sqlalchemy as sa

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, MappedAsDataclass, declared_attr, mapped_column

from backoffice.utils.timezone import timezone

# String UUID primary key, generated on the Python side so ids are known before flush
uuid_pk = Annotated[
    str,
    mapped_column(sa.String(36), primary_key=True, index=True, sort_order=-999, comment='Primary key'),
]

# BRL ledger amounts
money = Annotated[Decimal, mapped_column(sa.Numeric(14, 4))]


class TimeZone(sa.TypeDecorator[datetime]):
    """Timezone-aware datetime column"""

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    @property
    def python_type(self) -> type[datetime]:
        return datetime

    def process_bind_param(self, value: datetime | None, dialect: sa.Dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.tz_info)
        return value

    def process_result_value(self, value: datetime | None, dialect: sa.Dialect) -> datetime | None:
        if value is not None:
            value = timezone.from_datetime(value)
        return value


class DateTimeMixin(MappedAsDataclass):
    """Created and updated timestamps"""

    created_time: Mapped[datetime] = mapped_column(
        TimeZone, init=False, default_factory=timezone.now, sort_order=999, comment='Created at'
    )
    updated_time: Mapped[datetime | None] = mapped_column(
        TimeZone, init=False, onupdate=timezone.now, sort_order=999, comment='Updated at'
    )


class MappedBase(AsyncAttrs, DeclarativeBase):
    """
    Declarative base shared by every model

    `AsyncAttrs <https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html#sqlalchemy.ext.asyncio.AsyncAttrs>`__

    `DeclarativeBase <https://docs.sqlalchemy.org/en/20/orm/declarative_config.html>`__
    """

    @declared_attr.directive
    def __table_args__(cls) -> dict:
        """Use the model docstring as the table comment"""
        return {'comment': cls.__doc__ or ''}


class DataClassBase(MappedAsDataclass, MappedBase):
    """
    Declarative base with dataclass integration. Column defaults follow dataclass field rules

    `MappedAsDataclass <https://docs.sqlalchemy.org/en/20/orm/dataclasses.html#orm-declarative-native-dataclasses>`__
    """

    __abstract__ = True


class Base(DataClassBase, DateTimeMixin):
    """
    Dataclass base with the primary key and timestamp columns
    """

    __abstract__ = True
