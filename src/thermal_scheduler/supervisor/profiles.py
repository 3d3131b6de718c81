"""Device thermal profiles and the generic fallback."""

from __future__ import annotations

import logging
from dataclasses import replace

from thermal_scheduler.supervisor.contracts import DeviceProfileStore
from thermal_scheduler.supervisor.models import DeviceThermalProfile
from thermal_scheduler.supervisor.repository import SupervisorRepository

logger = logging.getLogger(__name__)

GENERIC_PROFILE_ID = "generic"

GENERIC_PROFILE = DeviceThermalProfile(
    device_id=GENERIC_PROFILE_ID,
    name="Generic Device",
    thermal_mass=1.0,
    cooling_rate=1.5,
    cooling_effectiveness=0.8,
    thermal_efficiency=0.8,
    optimal_max=45.0,
    safe_max=60.0,
    warning_max=70.0,
    critical=80.0,
)


class RepositoryProfileStore:
    """DeviceProfileStore backed by the device_profiles table."""

    def __init__(self, repository: SupervisorRepository) -> None:
        self._repository = repository

    def get(self, device_id: str) -> DeviceThermalProfile | None:
        return self._repository.get_profile(device_id)

    def save(self, profile: DeviceThermalProfile) -> DeviceThermalProfile:
        saved = self._repository.upsert_profile(profile)
        logger.info("Device profile saved: %s", profile.device_id)
        return saved


def resolve_profile(store: DeviceProfileStore | None, device_id: str) -> DeviceThermalProfile:
    """Return the stored profile for a device or the generic one.

    A missing profile or a failing store never rejects work; the generic
    profile is substituted under the requested device id.
    """

    if store is None:
        return replace(GENERIC_PROFILE, device_id=device_id)
    try:
        profile = store.get(device_id)
    except Exception as error:  # noqa: BLE001
        logger.warning("Could not load device profile %s: %s", device_id, error)
        profile = None
    if profile is None:
        logger.debug("No profile for device %s, using generic profile", device_id)
        return replace(GENERIC_PROFILE, device_id=device_id)
    return profile
