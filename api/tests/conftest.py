import os

# Tests run without an OTLP collector; tracing setup is exercised separately.
os.environ.setdefault("MD_OTEL_ENABLED", "false")
