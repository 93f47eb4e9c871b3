"""Performance Radar: Core Web Vitals monitoring service."""

__version__ = "1.0.0"
