from .booking import Booking, Interval, can_book, derive_interval, find_conflict, overlaps
from .engine import BookingEngine, BookingLine
from .errors import (
	BookingError,
	BookingStorageError,
	CapacityShrinkDataLossWarning,
	ConflictError,
	ErrorCode,
	NotFoundError,
	SeatsUnavailableError,
	ValidationError,
)
from .pricing import PriceQuote, ReservationRequest, SeatPriceLine, price
from .timeofday import clamp_to_not_before_now, format_time, parse_time, to_12_hour, to_24_hour
from .venues import (
	ResizePlan,
	Seat,
	Venue,
	apply_default_price_to_all_seats,
	effective_price,
	resize_capacity,
)
from .yaml_store import VenueYamlRepository

__all__ = [
	"Booking",
	"Interval",
	"can_book",
	"derive_interval",
	"find_conflict",
	"overlaps",
	"BookingEngine",
	"BookingLine",
	"BookingError",
	"BookingStorageError",
	"CapacityShrinkDataLossWarning",
	"ConflictError",
	"ErrorCode",
	"NotFoundError",
	"SeatsUnavailableError",
	"ValidationError",
	"PriceQuote",
	"ReservationRequest",
	"SeatPriceLine",
	"price",
	"clamp_to_not_before_now",
	"format_time",
	"parse_time",
	"to_12_hour",
	"to_24_hour",
	"ResizePlan",
	"Seat",
	"Venue",
	"apply_default_price_to_all_seats",
	"effective_price",
	"resize_capacity",
	"VenueYamlRepository",
]
