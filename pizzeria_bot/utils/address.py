"""Address meta codec.

Customer profiles store the delivery address as a small JSON document
``{"text": ..., "location": {"lat": .., "lng": ..}}``. Older rows hold a
plain string, which is read back as text without a location.
"""
import json
from typing import Any, Dict, Optional


def parse_address(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {"text": None, "location": None}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return {"text": raw, "location": None}
    if not isinstance(data, dict):
        return {"text": raw, "location": None}

    location = data.get("location")
    if isinstance(location, dict) and "lat" in location and "lng" in location:
        try:
            location = {"lat": float(location["lat"]), "lng": float(location["lng"])}
        except (TypeError, ValueError):
            location = None
    else:
        location = None
    return {"text": data.get("text"), "location": location}


def stringify_address(text: Optional[str], location: Optional[Dict[str, float]] = None) -> str:
    payload = {"text": text or None, "location": None}
    if location:
        payload["location"] = {"lat": location["lat"], "lng": location["lng"]}
    return json.dumps(payload, ensure_ascii=False)
