"""Proxy-mesh gateway components: compliance, GeoIP, access control, API keys, rate limiting, caching, auditing and federation."""

__version__ = "1.0.0"