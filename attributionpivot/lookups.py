from __future__ import annotations

from collections.abc import Iterable


# Ad network name (lower-case) -> CRM source labels it is recorded under.
SOURCE_MAPPING: dict[str, list[str]] = {
    "google ads": ["adwords", "google"],
    "facebook": ["facebook", "meta", "fb"],
}

# Ads-side ISO country code -> CRM customer.country value.
COUNTRY_CODE_TO_CRM: dict[str, str] = {
    "AT": "austria",
    "BE": "belgium",
    "CH": "switzerland",
    "CZ": "czech republic",
    "DE": "germany",
    "DK": "denmark",
    "EE": "estonia",
    "ES": "spain",
    "FI": "finland",
    "FR": "france",
    "GB": "united kingdom",
    "HR": "croatia",
    "HU": "hungary",
    "IE": "ireland",
    "IT": "italy",
    "LT": "lithuania",
    "LV": "latvia",
    "NL": "netherlands",
    "NO": "norway",
    "PL": "poland",
    "PT": "portugal",
    "RO": "romania",
    "SE": "sweden",
    "SI": "slovenia",
    "SK": "slovakia",
    "UK": "united kingdom",
    "US": "united states",
}


def normalize_source(source: str | None) -> str:
    return (source or "").strip().lower()


def sources_for_network(network: str | None) -> list[str]:
    return SOURCE_MAPPING.get(normalize_source(network), [])


def sources_for_networks(networks: Iterable[str]) -> list[str]:
    out: list[str] = []
    for network in networks:
        for src in sources_for_network(network):
            if src not in out:
                out.append(src)
    return out


def match_network_to_source(network: str | None, source: str | None) -> bool:
    if not source:
        return False
    return normalize_source(source) in sources_for_network(network)


def country_to_crm(code: str | None) -> str:
    c = (code or "").strip()
    return COUNTRY_CODE_TO_CRM.get(c.upper(), c.lower())
