"""Vehicle photo deduplication, shot classification and SEO alt text."""

__version__ = "1.0.0"
