"""Cache keys and invalidation for appointment listings."""

import hashlib
import json
from uuid import UUID

import structlog

from app.core.redis_client import CacheManager
from app.schemas.appointments import AppointmentFilters

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "appointments"
ADMIN_SCOPE = "admin"


def patient_scope(patient_id: UUID) -> str:
    """Cache scope of one patient's listings."""
    return f"patient:{patient_id}"


def doctor_scope(doctor_id: UUID) -> str:
    """Cache scope of one doctor's listings."""
    return f"doctor:{doctor_id}"


def listing_cache_key(scope: str, filters: AppointmentFilters) -> str:
    """
    Generate cache key for one listing page.

    Args:
        scope: ``patient:<id>``, ``doctor:<id>`` or ``admin``
        filters: Filters and pagination of the listing

    Returns:
        Key of the form ``appointments:<scope>:<md5 of filters>``
    """
    fingerprint = json.dumps(filters.cache_fingerprint(), sort_keys=True)
    digest = hashlib.md5(fingerprint.encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}:{scope}:{digest}"


class AppointmentCacheInvalidator:
    """Drops cached listings affected by an appointment change."""

    def __init__(self, cache_manager: CacheManager):
        """Initialize invalidator with cache manager."""
        self.cache = cache_manager

    def invalidate(self, patient_id: UUID | None = None, doctor_id: UUID | None = None) -> int:
        """
        Delete the patient, doctor and admin listing pages.

        The admin scope is always cleared since it lists every appointment.

        Returns:
            Number of keys deleted
        """
        scopes = [ADMIN_SCOPE]
        if patient_id is not None:
            scopes.append(patient_scope(patient_id))
        if doctor_id is not None:
            scopes.append(doctor_scope(doctor_id))

        deleted = 0
        for scope in scopes:
            deleted += self.cache.delete_pattern(f"{CACHE_PREFIX}:{scope}:*")

        logger.debug(
            "appointment_cache_invalidated",
            scopes=scopes,
            deleted=deleted,
        )
        return deleted
