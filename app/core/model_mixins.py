"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    MetadataMixin: Flexible JSON metadata storage

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Fields:
        id: UUIDField as primary key (auto-generated)

    Note:
        Gateway metadata and webhook payloads carry these ids as strings,
        so they never reveal record counts to the outside world.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Flexible JSON metadata storage.

    Fields:
        metadata: JSONField for arbitrary key/value data

    Usage:
        entry.set_metadata("gateway", "stripe")
        entry.get_metadata("gateway")  # "stripe"
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    class Meta:
        abstract = True

    def get_metadata(self, key: str, default: Any = None) -> Any:
        """Return a metadata value, or ``default`` when missing."""
        return (self.metadata or {}).get(key, default)

    def set_metadata(self, key: str, value: Any) -> None:
        """
        Set a metadata value.

        Note: Does not save - caller must save after calling.
        """
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
