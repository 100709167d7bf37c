from prometheus_client import Counter, Histogram

# --- HTTP ---
requests_total = Counter("carebook_requests_total", "Total HTTP requests")
latency_seconds = Histogram("carebook_request_latency_seconds", "HTTP request latency")

# --- RBAC ---
auth_rejections = Counter(
    "carebook_auth_rejections_total", "Requests rejected by the RBAC layer", ["code"]
)

# --- Bookings ---
booking_create_ok = Counter("carebook_booking_create_ok_total", "Successful booking creations")
booking_create_fail = Counter("carebook_booking_create_fail_total", "Failed booking creations")

# --- Cache ---
cache_lookups = Counter("carebook_cache_lookups_total", "Cache lookups", ["result"])
