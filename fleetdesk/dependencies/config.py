"""Request-scoped rental configuration."""

from fleetdesk.core.settings import get_settings
from fleetdesk.services.pricing import RentalConfig


def get_rental_config() -> RentalConfig:
    # Overridden in tests through app.dependency_overrides
    return get_settings().rental_config()
