"""
Core base model providing common functionality for all domain models.

Base Classes:
    BaseModel: Abstract model with timestamps (created_at, updated_at)
    VersionedModel: BaseModel plus a change counter bumped on every save

For the UUID primary key mixin, see core.model_mixins.

Usage:
    from core.models import VersionedModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Transaction(UUIDPrimaryKeyMixin, VersionedModel):
        gross_amount_cents = models.PositiveBigIntegerField()

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F


class BaseModel(models.Model):
    """
    Abstract base model providing common fields for all models.

    Fields:
        created_at: Automatically set when the object is first created
        updated_at: Automatically updated whenever the object is saved
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,  # Index for efficient time-based queries
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        # Default ordering by creation time (newest first)
        ordering = ["-created_at"]

    def __str__(self) -> str:
        """Default string representation using primary key."""
        return f"{self.__class__.__name__}(id={self.pk})"


class VersionedModel(BaseModel):
    """
    BaseModel with a change counter bumped atomically on every update.

    The counter does not detect conflicting writes. Callers that
    read-modify-write serialize with select_for_update(). The increment
    happens in SQL (F("version") + 1), so two writers that both loaded
    version 3 still end at 5, and the in-memory value is refreshed after
    the write.

    Note:
        Only the version column is refreshed. Models with protected
        FSMFields cannot use a full refresh_from_db().
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Change counter, incremented on each save",
    )

    class Meta(BaseModel.Meta):
        abstract = True

    def save(self, *args, **kwargs):
        """Save with version auto-increment on update."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version", "updated_at"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
