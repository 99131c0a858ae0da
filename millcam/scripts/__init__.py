"""Command-line entry points (``millcam-generate``, ``millcam-stream``)."""
