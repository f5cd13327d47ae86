"""Application-wide constants for the lessonbook engine."""

from __future__ import annotations

BRAND_NAME = "lessonbook"

# Lesson duration constraints
MIN_LESSON_DURATION = 15  # minutes
MAX_LESSON_DURATION = 480  # minutes (8 hours)

# Buffer constraints
MAX_BUFFER_MINUTES = 120

# Text constraints
MAX_REASON_LENGTH = 255

# Availability constraints
MAX_FUTURE_DAYS = 365  # Maximum days ahead that availability is resolved for
MAX_RANGE_DAYS = 31  # Maximum span of a multi-day availability query

# Cancellation reasons carried on reservation/invoice events
CANCEL_REASON_PAYMENT_TIMEOUT = "payment_timeout"
CANCEL_REASON_STAFF_DECLINE = "staff_decline"
CANCEL_REASON_CUSTOMER = "customer_cancelled"

# API metadata
API_TITLE = "lessonbook API"
API_DESCRIPTION = "Lesson scheduling, reservations and payment settlement for a driving school"
API_VERSION = "1.0.0"

# CORS
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
