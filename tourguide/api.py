"""HTTP client for the tourism backend (itineraries, touring area, progress)."""

import os
from typing import Optional

import requests

from .config import CONFIG
from .logger import Logger
from .models import Site


def site_from_record(record: dict) -> Optional[Site]:
    """Normalise a backend site record. Returns None for sites without coordinates."""
    lat = record.get("latitude")
    lon = record.get("longitude")
    if lat is None or lon is None:
        return None

    name = record.get("siteName") or record.get("title") or "Site"
    media = [m.get("url") for m in record.get("mediaFiles") or [] if m.get("url")]
    if record.get("mediaUrl"):
        media.insert(0, record["mediaUrl"])

    fee_info = None
    if record.get("feeType", "none") != "none":
        fee_info = {
            "type": record.get("feeType"),
            "amount": record.get("feeAmount"),
            "amount_discounted": record.get("feeAmountDiscounted"),
        }

    return Site(
        id=str(record.get("_id") or record["id"]),
        lat=float(lat),
        lon=float(lon),
        name=name,
        description=record.get("siteDescription") or record.get("description") or "",
        media=tuple(media),
        fee_info=fee_info,
        status=record.get("status") or "active",
    )


class BackendClient:
    """Thin wrapper around the backend REST API.

    Read calls raise ``requests.RequestException`` on failure; callers decide
    how to degrade.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None, logger: Optional[Logger] = None):
        self.base_url = (base_url or os.environ.get("TOURGUIDE_API_URL") or CONFIG["api_base_url"]).rstrip("/")
        self.timeout = timeout or CONFIG["api_timeout"]
        self.session = session or requests.Session()
        self.logger = logger

    def _headers(self, token: Optional[str]) -> dict:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _get(self, path: str, token: Optional[str] = None) -> requests.Response:
        response = self.session.get(f"{self.base_url}{path}", headers=self._headers(token),
                                    timeout=self.timeout)
        response.raise_for_status()
        return response

    def _post(self, path: str, payload: dict, token: Optional[str] = None) -> requests.Response:
        response = self.session.post(f"{self.base_url}{path}", json=payload,
                                     headers=self._headers(token), timeout=self.timeout)
        response.raise_for_status()
        return response

    def get_itinerary(self, itinerary_id: str, token: Optional[str] = None) -> tuple[str, list[Site]]:
        """Fetch an itinerary's name and its geo-tagged sites"""
        data = self._get(f"/itineraries/{itinerary_id}", token).json()
        sites = [s for s in (site_from_record(r) for r in data.get("sites") or []) if s]
        return data.get("name") or "Itinerary", sites

    def get_touring_area(self) -> Optional[list[list[float]]]:
        """Outer ring of the touring-area mask as [lon, lat] pairs"""
        data = self._get("/mask").json()
        geometry = (data or {}).get("geometry") or {}
        coordinates = geometry.get("coordinates") or []
        if not coordinates:
            return None
        if geometry.get("type") == "MultiPolygon":
            return coordinates[0][0]
        return coordinates[0]

    def get_progress(self, itinerary_id: str, token: str) -> Optional[dict]:
        """Stored progress, or None if the user has none for this itinerary"""
        try:
            response = self._get(f"/itinerary-progress/{itinerary_id}", token)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return None
            raise
        return response.json() or None

    def post_progress(self, itinerary_id: str, payload: dict, token: str) -> None:
        self._post(f"/itinerary-progress/{itinerary_id}", payload, token)

    def record_visit(self, itinerary_id: str, site_id: str, token: str) -> bool:
        """Add a site to the user's permanent visit archive"""
        try:
            self._post("/visited-sites", {"itineraryId": itinerary_id, "siteId": site_id}, token)
            return True
        except requests.RequestException as e:
            self._log("Failed to record visit", {"site": site_id, "error": str(e)})
            return False

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
