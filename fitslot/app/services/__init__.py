"""Service package exports.

Booking engine entry points, grouped by concern in the submodules.
"""

from .booking_services import BookingAdmissionController, CancellationHandler
from .payment_services import PaymentCallbackReconciler
from .slot_services import AvailabilityCalculator, generate_slot_grid
from .yield_services import YieldScanner

__all__ = [
    "AvailabilityCalculator",
    "BookingAdmissionController",
    "CancellationHandler",
    "PaymentCallbackReconciler",
    "YieldScanner",
    "generate_slot_grid",
]
