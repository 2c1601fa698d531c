# utils/places_client.py
# Google Places autocomplete + details, used by studio/class address inputs.

import logging
from typing import Any, Dict, List

import requests
from flask import current_app

from .error_handler import ProviderError, ServiceUnavailable

log = logging.getLogger(__name__)


def _get(endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
    cfg = current_app.config
    key = cfg.get("GOOGLE_PLACES_API_KEY")
    if not key:
        raise ServiceUnavailable("Places API not configured")
    try:
        r = requests.get(
            f"{cfg['PLACES_API_BASE']}/{endpoint}/json",
            params={**params, "key": key},
            timeout=cfg["REQUEST_TIMEOUT"],
        )
    except requests.exceptions.RequestException as e:
        log.error(f"❌ Places {endpoint} failed: {e}")
        raise ProviderError("Failed to reach places service")
    if not r.ok:
        log.error(f"❌ Places HTTP {r.status_code}: {r.text[:200]}")
        raise ProviderError("Places service error")
    data = r.json()
    status = data.get("status", "OK")
    if status not in ("OK", "ZERO_RESULTS"):
        log.error(f"❌ Places status {status}: {data.get('error_message')}")
        raise ProviderError("Places service error")
    return data


def autocomplete(query: str) -> List[Dict[str, Any]]:
    data = _get("autocomplete", {
        "input": query,
        "components": f"country:{current_app.config['PLACES_COUNTRY']}",
    })
    return data.get("predictions") or []


def place_details(place_id: str) -> Dict[str, Any]:
    data = _get("details", {
        "place_id": place_id,
        "fields": "name,formatted_address,address_components,geometry",
    })
    result = data.get("result") or {}

    parts: Dict[str, str] = {}
    for comp in result.get("address_components") or []:
        for kind in comp.get("types") or []:
            parts.setdefault(kind, comp.get("short_name") if kind == "administrative_area_level_1" else comp.get("long_name"))

    street = " ".join(p for p in (parts.get("street_number"), parts.get("route")) if p)
    location = ((result.get("geometry") or {}).get("location")) or {}
    return {
        "place_id": place_id,
        "name": result.get("name"),
        "formatted_address": result.get("formatted_address"),
        "address": street or None,
        "city": parts.get("locality") or parts.get("sublocality") or parts.get("postal_town"),
        "state": parts.get("administrative_area_level_1"),
        "zip_code": parts.get("postal_code"),
        "lat": location.get("lat"),
        "lng": location.get("lng"),
    }
