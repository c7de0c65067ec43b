"""urlsentry: multi-layer URL risk verdicts."""

__version__ = "0.1.0"
