# backend/lessonbook/models/base_enum.py
"""
Safe enum helpers for SQLAlchemy.

Status columns persist enum VALUES (lowercase strings) rather than NAMES, and
are stored as a non-native VARCHAR guarded by a CHECK constraint so the same
schema works on PostgreSQL and SQLite. Unknown strings are rejected when
written (``validate_strings``) and raise ``LookupError`` when read.

Usage:
    from lessonbook.models.base_enum import create_safe_enum

    class MyModel(Base):
        status = mapped_column(
            create_safe_enum(MyStatus, "my_status"),
            nullable=False,
            default=MyStatus.ACTIVE,
        )
"""

from enum import Enum
from typing import Sequence, Type

from sqlalchemy import Enum as SAEnum


def create_safe_enum(
    enum_class: Type[Enum],
    name: str,
    *,
    validate_strings: bool = True,
) -> SAEnum:
    """
    Create a SQLAlchemy Enum that stores enum values (not names).

    Args:
        enum_class: The Python Enum class to use (must inherit from ``str``)
        name: Name of the generated CHECK constraint
        validate_strings: Reject unknown string values on write (default True)
    """
    if not issubclass(enum_class, str):
        raise TypeError(f"{enum_class.__name__} must inherit from (str, Enum)")
    return SAEnum(
        enum_class,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=max(len(v) for v in _get_enum_values(enum_class)),
        validate_strings=validate_strings,
        values_callable=_get_enum_values,
    )


def _get_enum_values(enum_class: Type[Enum]) -> Sequence[str]:
    return [member.value for member in enum_class]
