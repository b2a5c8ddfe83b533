"""Versioned provider-geography → ISO 3166-1 alpha-2 lookup tables."""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from spendsync.config import UNKNOWN_COUNTRY


@dataclass(frozen=True)
class CountryMapping:
    name: str
    version: str
    table: Mapping[str, str]

    def lookup(self, key: Any) -> str:
        """ISO code for ``key``, or the unknown sentinel when unmapped."""
        if key is None:
            return UNKNOWN_COUNTRY
        return self.table.get(str(key).strip(), UNKNOWN_COUNTRY)


# Google Ads geo target constants (country level). Others map to unknown.
GOOGLE_ADS_GEO_TARGETS = CountryMapping(
    name="google_ads_geo_targets",
    version="2026-02",
    table=MappingProxyType({
        "2840": "US", "2826": "GB", "2124": "CA", "2036": "AU", "2276": "DE",
        "2250": "FR", "2380": "IT", "2724": "ES", "2528": "NL", "2616": "PL",
        "2578": "NO", "2752": "SE", "2208": "DK", "2246": "FI", "2756": "CH",
        "2040": "AT", "2056": "BE", "2372": "IE", "2620": "PT", "2203": "CZ",
        "2348": "HU", "2642": "RO", "2100": "BG", "2191": "HR", "2300": "GR",
        "2703": "SK", "2705": "SI", "2428": "LV", "2440": "LT", "2233": "EE",
        "2392": "JP", "2410": "KR", "2156": "CN", "2356": "IN", "2076": "BR",
        "2484": "MX", "2032": "AR", "2152": "CL", "2170": "CO", "2604": "PE",
        "2710": "ZA", "2566": "NG", "2818": "EG", "2784": "AE", "2682": "SA",
        "2376": "IL", "2792": "TR", "2643": "RU", "2804": "UA", "2702": "SG",
        "2360": "ID", "2764": "TH", "2704": "VN", "2608": "PH", "2458": "MY",
        "2554": "NZ",
    }),
)


__all__ = ["CountryMapping", "GOOGLE_ADS_GEO_TARGETS"]
