
import base64, binascii, json
from datetime import date, datetime, timezone
from typing import Optional

COUNTRY_ALIASES = {
    "Türkiye": "Turkey",
    "Turkiye": "Turkey",
    "Republic of Turkey": "Turkey",
    "Deutschland": "Germany",
    "Federal Republic of Germany": "Germany",
    "United States of America": "United States",
}

CRM_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def b64png_to_bytes(data_url: str) -> bytes:
    # accepts "data:image/png;base64,....." or bare base64
    if "," in data_url:
        data_url = data_url.split(",", 1)[1]
    try:
        return base64.b64decode(data_url, validate=False)
    except (binascii.Error, ValueError):
        return b""


def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def parse_json_field(value, default):
    """Decode a JSON text field stored on a CRM record; bad data yields ``default``."""
    if value in (None, ""):
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return default


def normalize_country(country: Optional[str]) -> Optional[str]:
    if not country:
        return country
    country = country.strip()
    return COUNTRY_ALIASES.get(country, country)


def join_phone(code: Optional[str], number: Optional[str]) -> Optional[str]:
    if not number:
        return None
    if code:
        return f"{code} {number}".strip()
    return number.strip()


def clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_crm_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(CRM_DATETIME_FORMAT)


def parse_crm_datetime(value) -> Optional[datetime]:
    """Parse a CRM date/datetime value as UTC; date-only values mean midnight."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
