"""Transactional outbox for domain events."""

from wayfarer.wayfarer_platform.outbox.services import archive_all, archive_pending, enqueue

__all__ = ["archive_all", "archive_pending", "enqueue"]
