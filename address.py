# address.py
"""
Australian address rules shared by the customer record endpoints.

Only AU addresses are supported: the state must be one of the eight
state/territory codes and the postcode is exactly four digits.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

COUNTRY = "AU"

STATE_NAMES = {
    "NSW": "New South Wales",
    "VIC": "Victoria",
    "QLD": "Queensland",
    "WA": "Western Australia",
    "SA": "South Australia",
    "TAS": "Tasmania",
    "ACT": "Australian Capital Territory",
    "NT": "Northern Territory",
}
STATE_CODES = tuple(STATE_NAMES)

POSTAL_CODE_RE = re.compile(r"^\d{4}$")

REQUIRED_FIELDS = ("street", "city", "state", "postalCode")


def is_valid_state_code(code: Any) -> bool:
    return isinstance(code, str) and code in STATE_NAMES


def is_valid_postal_code(code: Any) -> bool:
    return isinstance(code, str) and bool(POSTAL_CODE_RE.match(code))


def state_name(code: Any) -> Optional[str]:
    return STATE_NAMES.get(code) if isinstance(code, str) else None


def invalid_state_message(code: Any) -> str:
    return f"Invalid state code '{code}'. Must be one of: {', '.join(STATE_CODES)}"


INVALID_POSTAL_CODE_MESSAGE = "Invalid postal code. Must be 4 digits (e.g., 2000)"


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def standardize_address(address: Dict[str, Any]) -> Dict[str, Any]:
    """Trim every part, upper-case the state and stamp the country.

    Only keys present on the input are kept so partial updates stay partial.
    """
    out: Dict[str, Any] = {}
    for key in REQUIRED_FIELDS:
        if key in address:
            value = address.get(key)
            if key == "postalCode" and isinstance(value, int) and not isinstance(value, bool):
                value = str(value)
            if isinstance(value, str):
                value = value.strip()
                if key == "state":
                    value = value.upper()
            out[key] = value
    out["country"] = COUNTRY
    return out


def validate_address(address: Any, partial: bool = False) -> List[str]:
    """Return the list of violated rules (empty when the address is valid).

    With partial=True only the keys present are checked, which is what an
    update needs.
    """
    if not isinstance(address, dict):
        return ["Address is required"]

    errors: List[str] = []
    labels = {"street": "Street address", "city": "City", "state": "State", "postalCode": "Postal code"}

    missing = [k for k in REQUIRED_FIELDS if (k in address or not partial) and not _clean(address.get(k))]
    if missing and not partial:
        errors.append("Address must include street, city, state, and postalCode")
    else:
        errors.extend(f"{labels[k]} is required" for k in missing)

    state = address.get("state")
    if "state" not in missing and (state is not None or not partial) and not is_valid_state_code(state):
        errors.append(invalid_state_message(state))

    postal = address.get("postalCode")
    if "postalCode" not in missing and (postal is not None or not partial) and not is_valid_postal_code(postal):
        errors.append(INVALID_POSTAL_CODE_MESSAGE)

    return errors
