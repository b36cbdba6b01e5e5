from .booking import (
    Actor,
    CreateBookingRequest,
    UpdateBookingStatusRequest,
    BookingResponse,
    BookingListResponse,
    AvailableSlotsResponse,
    BusinessCalendarResponse,
)

from .events import (
    ServiceDetails,
    ServiceUpserted,
    AvailabilityRuleIn,
    AvailabilityReplaced,
    PaymentSignal,
)
