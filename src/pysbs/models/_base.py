"""Base model and enum for pysbs data types.

Every pysbs model inherits from :class:`SbsBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields serialize to the
  camelCase keys used on the subscriber wire.
* Frozen instances: records handed to consumers are immutable copies.

Code enums inherit from :class:`SbsEnum` which adds an ``UNKNOWN``
member at ``-1`` and a ``_missing_`` hook that returns ``UNKNOWN``
for any value without a mapped member.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel


def ensure_utc(value: Any) -> Any:
    """Attach UTC to naive datetimes; leave everything else to pydantic."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, BeforeValidator(ensure_utc)]
"""Annotated type that coerces naive datetimes to UTC."""


class SbsEnum(enum.IntEnum):
    """Base for integer code enums.

    Every subclass **must** define ``UNKNOWN = -1``.
    """

    @classmethod
    def _missing_(cls, value: object) -> SbsEnum:
        if hasattr(cls, "UNKNOWN"):
            unknown: SbsEnum = cls.UNKNOWN  # type: ignore[attr-defined]
            return unknown
        return next(iter(cls))


class SbsBaseModel(BaseModel):
    """Base for pysbs models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
