"""Country lookup for IPv4 addresses from a table of address ranges."""

from __future__ import annotations

import csv
import ipaddress
import threading
from dataclasses import dataclass
from os import PathLike

_Address = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class GeoIPEntry:
    """An inclusive address range assigned to a country."""

    start_ip: _Address
    end_ip: _Address
    country: str
    country_code: str = ""


def _parse_ip(value) -> _Address | None:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError:
        return None


def _to_ipv4(value) -> ipaddress.IPv4Address | None:
    address = _parse_ip(value)
    if address is None:
        return None
    if isinstance(address, ipaddress.IPv6Address):
        return address.ipv4_mapped
    return address


def ip_in_range(ip, start, end) -> bool:
    """Whether IPv4 address ip lies in the inclusive range start..end."""
    ip4, start4, end4 = _to_ipv4(ip), _to_ipv4(start), _to_ipv4(end)
    if ip4 is None or start4 is None or end4 is None:
        return False
    return start4 <= ip4 <= end4


_DEFAULT_RANGES = [
    ("1.0.0.0", "1.255.255.255", "Australia", "AU"),
    ("3.0.0.0", "3.255.255.255", "United States", "US"),
    ("8.0.0.0", "8.255.255.255", "United States", "US"),
    ("13.0.0.0", "13.255.255.255", "United States", "US"),
    ("18.0.0.0", "18.255.255.255", "United States", "US"),
    ("23.0.0.0", "23.255.255.255", "United States", "US"),
    ("24.0.0.0", "24.255.255.255", "United States", "US"),
    ("34.0.0.0", "35.255.255.255", "United States", "US"),
    ("44.0.0.0", "44.255.255.255", "United States", "US"),
    ("50.0.0.0", "50.255.255.255", "United States", "US"),
    ("51.0.0.0", "51.255.255.255", "United Kingdom", "GB"),
    ("52.0.0.0", "52.255.255.255", "United States", "US"),
    ("54.0.0.0", "54.255.255.255", "United States", "US"),
    ("58.0.0.0", "61.255.255.255", "Asia Pacific", "AP"),
    ("62.0.0.0", "62.255.255.255", "Europe", "EU"),
    ("77.0.0.0", "95.255.255.255", "Europe", "EU"),
    ("96.0.0.0", "96.255.255.255", "United States", "US"),
    ("98.0.0.0", "98.255.255.255", "United States", "US"),
    ("100.0.0.0", "100.255.255.255", "United States", "US"),
    ("101.0.0.0", "103.255.255.255", "Asia Pacific", "AP"),
    ("104.0.0.0", "104.255.255.255", "United States", "US"),
    ("106.0.0.0", "106.255.255.255", "China", "CN"),
    ("108.0.0.0", "108.255.255.255", "United States", "US"),
    ("109.0.0.0", "109.255.255.255", "Europe", "EU"),
    ("110.0.0.0", "126.255.255.255", "Asia Pacific", "AP"),
    ("128.0.0.0", "132.255.255.255", "United States", "US"),
    ("134.0.0.0", "139.255.255.255", "United States", "US"),
    ("140.0.0.0", "140.255.255.255", "United States", "US"),
    ("141.0.0.0", "141.255.255.255", "Europe", "EU"),
    ("142.0.0.0", "142.255.255.255", "United States", "US"),
    ("143.0.0.0", "143.255.255.255", "United States", "US"),
    ("144.0.0.0", "144.255.255.255", "United States", "US"),
    ("145.0.0.0", "145.255.255.255", "Europe", "EU"),
    ("146.0.0.0", "146.255.255.255", "United States", "US"),
    ("147.0.0.0", "147.255.255.255", "United States", "US"),
    ("148.0.0.0", "148.255.255.255", "United States", "US"),
    ("149.0.0.0", "149.255.255.255", "United States", "US"),
    ("150.0.0.0", "150.255.255.255", "Asia Pacific", "AP"),
    ("151.0.0.0", "151.255.255.255", "Europe", "EU"),
    ("152.0.0.0", "152.255.255.255", "United States", "US"),
    ("153.0.0.0", "153.255.255.255", "Asia Pacific", "AP"),
    ("154.0.0.0", "154.255.255.255", "Africa", "AF"),
    ("155.0.0.0", "155.255.255.255", "United States", "US"),
    ("156.0.0.0", "156.255.255.255", "United States", "US"),
    ("157.0.0.0", "157.255.255.255", "Asia Pacific", "AP"),
    ("158.0.0.0", "158.255.255.255", "United States", "US"),
    ("159.0.0.0", "159.255.255.255", "United States", "US"),
    ("160.0.0.0", "164.255.255.255", "Asia Pacific", "AP"),
    ("165.0.0.0", "166.255.255.255", "United States", "US"),
    ("167.0.0.0", "167.255.255.255", "United States", "US"),
    ("168.0.0.0", "168.255.255.255", "United States", "US"),
    ("169.0.0.0", "169.255.255.255", "United States", "US"),
    ("170.0.0.0", "170.255.255.255", "United States", "US"),
    ("171.0.0.0", "171.255.255.255", "Asia Pacific", "AP"),
    ("172.0.0.0", "172.255.255.255", "United States", "US"),
    ("173.0.0.0", "174.255.255.255", "United States", "US"),
    ("175.0.0.0", "175.255.255.255", "Asia Pacific", "AP"),
    ("176.0.0.0", "176.255.255.255", "Europe", "EU"),
    ("177.0.0.0", "177.255.255.255", "Latin America", "LA"),
    ("178.0.0.0", "178.255.255.255", "Europe", "EU"),
    ("179.0.0.0", "179.255.255.255", "Latin America", "LA"),
    ("180.0.0.0", "180.255.255.255", "Asia Pacific", "AP"),
    ("181.0.0.0", "181.255.255.255", "Latin America", "LA"),
    ("182.0.0.0", "182.255.255.255", "Asia Pacific", "AP"),
    ("183.0.0.0", "183.255.255.255", "Asia Pacific", "AP"),
    ("184.0.0.0", "184.255.255.255", "United States", "US"),
    ("185.0.0.0", "185.255.255.255", "Europe", "EU"),
    ("186.0.0.0", "186.255.255.255", "Latin America", "LA"),
    ("187.0.0.0", "187.255.255.255", "Latin America", "LA"),
    ("188.0.0.0", "188.255.255.255", "Europe", "EU"),
    ("189.0.0.0", "189.255.255.255", "Latin America", "LA"),
    ("190.0.0.0", "190.255.255.255", "Latin America", "LA"),
    ("191.0.0.0", "191.255.255.255", "Latin America", "LA"),
    ("192.0.0.0", "192.255.255.255", "United States", "US"),
    ("193.0.0.0", "195.255.255.255", "Europe", "EU"),
    ("196.0.0.0", "196.255.255.255", "Africa", "AF"),
    ("197.0.0.0", "197.255.255.255", "Africa", "AF"),
    ("198.0.0.0", "198.255.255.255", "United States", "US"),
    ("199.0.0.0", "199.255.255.255", "United States", "US"),
    ("200.0.0.0", "201.255.255.255", "Latin America", "LA"),
    ("202.0.0.0", "203.255.255.255", "Asia Pacific", "AP"),
    ("204.0.0.0", "209.255.255.255", "United States", "US"),
    ("210.0.0.0", "210.255.255.255", "Asia Pacific", "AP"),
    ("211.0.0.0", "211.255.255.255", "Asia Pacific", "AP"),
    ("212.0.0.0", "212.255.255.255", "Europe", "EU"),
    ("213.0.0.0", "213.255.255.255", "Europe", "EU"),
    ("214.0.0.0", "215.255.255.255", "United States", "US"),
    ("216.0.0.0", "216.255.255.255", "United States", "US"),
    ("217.0.0.0", "217.255.255.255", "Europe", "EU"),
    ("218.0.0.0", "218.255.255.255", "Asia Pacific", "AP"),
    ("219.0.0.0", "219.255.255.255", "Asia Pacific", "AP"),
    ("220.0.0.0", "220.255.255.255", "Asia Pacific", "AP"),
    ("221.0.0.0", "221.255.255.255", "Asia Pacific", "AP"),
    ("222.0.0.0", "223.255.255.255", "Asia Pacific", "AP"),
    ("224.0.0.0", "255.255.255.255", "Reserved", "XX"),
]

DEFAULT_ENTRIES: tuple[GeoIPEntry, ...] = tuple(
    GeoIPEntry(ipaddress.ip_address(start), ipaddress.ip_address(end), country, code)
    for start, end, country, code in _DEFAULT_RANGES
)


class GeoIPService:
    """Looks up country codes for IPv4 addresses."""

    def __init__(self) -> None:
        self.entries: list[GeoIPEntry] = []
        self._lock = threading.RLock()

    def load_csv(self, path: str | PathLike) -> list[GeoIPEntry]:
        """Load ranges from a CSV of start_ip,end_ip,country[,country_code].

        A leading header row is skipped, as are rows with fewer than three
        columns or unparsable addresses. Rows must all have the same number
        of fields; otherwise ValueError is raised.
        """
        with open(path, newline="", encoding="utf-8") as handle:
            rows = [row for row in csv.reader(handle) if row]

        if rows:
            width = len(rows[0])
            for line, row in enumerate(rows, start=1):
                if len(row) != width:
                    raise ValueError(
                        f"failed to parse GeoIP CSV: record {line} has "
                        f"{len(row)} fields, expected {width}"
                    )

        entries: list[GeoIPEntry] = []
        for index, row in enumerate(rows):
            if index == 0 and row[0].lower() == "start_ip":
                continue
            if len(row) < 3:
                continue
            start_ip, end_ip = _parse_ip(row[0]), _parse_ip(row[1])
            if start_ip is None or end_ip is None:
                continue
            country_code = row[3] if len(row) >= 4 else ""
            entries.append(GeoIPEntry(start_ip, end_ip, row[2], country_code))

        with self._lock:
            self.entries = entries
        return entries

    def lookup(self, ip: str) -> str:
        """Return the country code for ip from the built-in range table, or ""."""
        ip4 = _to_ipv4(ip)
        if ip4 is None:
            return ""
        with self._lock:
            for entry in DEFAULT_ENTRIES:
                if ip_in_range(ip4, entry.start_ip, entry.end_ip):
                    return entry.country_code
        return ""