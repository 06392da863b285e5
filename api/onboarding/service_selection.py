
import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from .crm import CRMClient
from .errors import CRMError, OnboardingError

logger = logging.getLogger(__name__)

SERVICE_DOCTYPE = "Service"
LEAD_DOCTYPE = "Lead"


def _service_label(row: dict) -> str:
    return row.get("service_name") or row.get("title") or row.get("name") or ""


class ServiceSelectionWriter:
    """Writes the lead's selected services as a child table plus two display strings.

    The whole table is replaced on every write. ``[]`` clears it; callers that
    have no services section must not call ``set_services`` at all.
    """

    def __init__(self, crm: CRMClient, today: Callable[[], date] = date.today):
        self.crm = crm
        self.today = today

    def resolve_names(self, service_ids: List[str]) -> Dict[str, str]:
        names = {service_id: service_id for service_id in service_ids}
        try:
            rows = self.crm.find_all(
                SERVICE_DOCTYPE,
                [["name", "in", service_ids]],
                fields=["name", "service_name"],
            )
        except CRMError as exc:
            logger.warning("service names could not be resolved, using ids: %s", exc.message)
            return names
        for row in rows:
            if row.get("name") in names:
                names[row["name"]] = _service_label(row) or row["name"]
        return names

    def build_fields(self, service_ids: List[str]) -> dict:
        ids = list(dict.fromkeys(s for s in service_ids if s))
        if not ids:
            return {
                "services": [],
                "custom_selected_services": "",
                "custom_selected_service_names": "",
            }
        names = self.resolve_names(ids)
        selected = self.today().isoformat()
        rows = [
            {
                "service": service_id,
                "service_name": names[service_id],
                "selected_date": selected,
                "terms_accepted": 1,
                "idx": index,
            }
            for index, service_id in enumerate(ids, start=1)
        ]
        return {
            "services": rows,
            "custom_selected_services": ", ".join(ids),
            "custom_selected_service_names": ", ".join(names[s] for s in ids),
        }

    def set_services(self, lead_name: str, service_ids: List[str]) -> dict:
        fields = self.build_fields(service_ids)
        try:
            self.crm.update(LEAD_DOCTYPE, lead_name, fields)
        except OnboardingError as exc:
            logger.warning("services for lead %s not saved: %s", lead_name, exc.message)
            return {"success": False, "error": exc.message}
        return {"success": True, "count": len(fields["services"])}


def list_services(crm: CRMClient, include_inactive: bool = False) -> List[dict]:
    rows = crm.find_all(SERVICE_DOCTYPE, fields=["*"])
    services = []
    for row in rows:
        active = row.get("is_active", row.get("enabled", 1))
        if not include_inactive and active in (0, "0", False):
            continue
        services.append({
            "id": row.get("name"),
            "name": _service_label(row),
            "description": row.get("description") or "",
            "isActive": bool(active),
        })
    return services


def selected_service_ids(lead: dict) -> List[str]:
    rows = lead.get("services") or []
    ids: List[Optional[str]] = [row.get("service") or row.get("service_name") for row in rows]
    ids = [s for s in ids if s]
    if not ids and lead.get("custom_selected_services"):
        ids = [s.strip() for s in lead["custom_selected_services"].split(",") if s.strip()]
    return ids
