"""Deprecation headers for legacy admin paths."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

DEFAULT_LEGACY_PATHS = ("/admin/nodes", "/admin/cooldowns", "/admin/sessions")
SUNSET_PERIOD = timedelta(days=90)


class DeprecationService:
    """Announces the sunset of legacy paths and points to their successors."""

    def __init__(
        self,
        sunset_date: datetime | None = None,
        legacy_paths: list[str] | None = None,
    ) -> None:
        if sunset_date is None:
            sunset_date = datetime.now(timezone.utc) + SUNSET_PERIOD
        self.sunset_date = sunset_date
        self.legacy_paths = (
            list(DEFAULT_LEGACY_PATHS) if legacy_paths is None else list(legacy_paths)
        )

    def headers_for(self, path: str) -> dict[str, str]:
        """Headers to add to a response for path; empty if it is not legacy."""
        for legacy in self.legacy_paths:
            if path in (legacy, legacy + "/"):
                sunset = self.sunset_date
                if sunset.tzinfo is None:
                    sunset = sunset.replace(tzinfo=timezone.utc)
                http_date = format_datetime(sunset.astimezone(timezone.utc), usegmt=True)
                return {
                    "Deprecation": f'date="{http_date}", msg="Use /v1{legacy} instead"',
                    "Link": f'</v1{legacy}>; rel="successor-version"',
                }
        return {}

    def add_legacy_path(self, path: str) -> None:
        """Mark another path as legacy."""
        self.legacy_paths.append(path)