"""
Image Insight – vision extraction pipeline.

Upload an image, extract and translate its text with Gemini, derive a summary
or email draft, forward results to a webhook and keep per-user settings in a
document store.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
]
