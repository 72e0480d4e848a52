from fleetdesk.db.base_class import Base

# Import models to register metadata for Base.metadata.create_all in tests
from fleetdesk.models.user import User  # noqa: F401
from fleetdesk.models.vehicle import Vehicle  # noqa: F401
from fleetdesk.models.package import Package, PackageCustomCost  # noqa: F401
from fleetdesk.models.booking import Booking, BookingCustomCost, BookingPackage  # noqa: F401
from fleetdesk.models.invoice import Invoice, InvoiceSequence  # noqa: F401
from fleetdesk.models.payment import Payment  # noqa: F401
from fleetdesk.models.notification import Notification  # noqa: F401
