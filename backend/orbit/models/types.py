from __future__ import annotations

import uuid

from ..extensions import db


def new_uuid() -> str:
    return str(uuid.uuid4())


def str_enum(enum_cls, name: str):
    """Portable enum column: stores the lowercase value, CHECK-constrained."""
    return db.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        values_callable=lambda cls: [member.value for member in cls],
    )
