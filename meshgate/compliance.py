"""Domain compliance checks for proxied targets."""

from __future__ import annotations

from dataclasses import dataclass, field

_GOVERNMENT_SUFFIXES = (".gov", ".mil", ".gov.uk", ".gov.au", ".gc.ca")
_FINANCIAL_PATTERNS = ("bank", "chase", "wellsfargo", "bankofamerica", "citibank")


def extract_domain(target: str) -> str:
    """Return the host part of a target URL, without scheme or path."""
    target = target.removeprefix("http://")
    target = target.removeprefix("https://")
    host, _, _ = target.partition("/")
    return host


@dataclass
class ComplianceService:
    """Decides which targets may not be proxied."""

    blocked_domains: list[str] = field(default_factory=list)
    kyc_required: bool = False

    def is_blocked(self, target: str) -> bool:
        """Whether the target's domain matches a blocked domain or wildcard."""
        domain = extract_domain(target)
        if not domain:
            return False
        domain = domain.lower()

        for blocked in self.blocked_domains:
            blocked = blocked.lower()
            if blocked.startswith("*."):
                suffix = blocked[1:]
                if domain.endswith(suffix) or domain == suffix[1:]:
                    return True
                continue
            if domain == blocked:
                return True
        return False

    def is_government_domain(self, domain: str) -> bool:
        """Whether the domain ends in a known government suffix."""
        return domain.lower().endswith(_GOVERNMENT_SUFFIXES)

    def is_financial_domain(self, domain: str) -> bool:
        """Whether the domain contains a known financial name."""
        domain = domain.lower()
        return any(pattern in domain for pattern in _FINANCIAL_PATTERNS)

    def validate_kyc(self, user_id: str) -> bool:
        """Whether the user passes KYC; only true when KYC is not required."""
        return not self.kyc_required