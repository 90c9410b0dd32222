from dispatch.models.booking import Booking
from dispatch.models.provider import ProviderAvailability
from dispatch.models.shared_group import SharedRideGroup
from dispatch.models.tracking import TrackingEvent
from dispatch.models.zone import ServiceZone

__all__ = ["Booking", "ProviderAvailability", "SharedRideGroup", "TrackingEvent", "ServiceZone"]
