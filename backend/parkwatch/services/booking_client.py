"""
Holiday Park reservation API client.

Site: https://rezerwuj.holidaypark.pl
The reservation endpoints require the session cookies set by the landing page,
so the client loads "/" once before the first API call. Resort and
accommodation-type metadata is fetched at the same time and cached.
"""
import logging
from datetime import date
from typing import Dict, List, Optional

import httpx

from parkwatch.exceptions import BookingApiError
from parkwatch.schemas.result import Availability

logger = logging.getLogger(__name__)

BASE_URL = "https://rezerwuj.holidaypark.pl"
APP_DATA_PATH = "/api/reservation/reservation-app-data/"
CHECK_AVAILABILITY_PATH = "/api/reservation/reservation-check-accommodation-type/"

# Used when the app-data payload does not name a resort / type
RESORT_NAMES = {
    1: "Pobierowo",
    2: "Ustronie Morskie",
    5: "Niechorze",
    6: "Rowy",
    7: "Kołobrzeg",
    8: "Mielno",
    9: "Uzdrowisko Cieplice Zdrój",
}

ACCOMMODATION_TYPE_NAMES = {
    1: "Domek",
    2: "Apartament",
    3: "Apartament 55m²",
    4: "Domek z ogrodem",
    5: "Apartament z ogrodem",
}

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def calculate_nights(date_from: str, date_to: str) -> int:
    return abs((date.fromisoformat(date_to) - date.fromisoformat(date_from)).days)


class HolidayParkClient:
    """
    Cookie-session client for the availability endpoints.

    Usage:
        client = HolidayParkClient()
        offers = await client.check_availability("2026-07-01", "2026-07-08", resort_ids=[1, 8])
        await client.close()
    """

    def __init__(self, base_url: str = BASE_URL, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._initialized = False
        self.resorts: Dict[int, dict] = {}
        self.accommodation_types: Dict[int, dict] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "application/json, text/plain, */*",
                    "Accept-Language": "pl,en;q=0.9",
                    "Referer": self.base_url,
                    "Origin": self.base_url,
                },
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def initialize(self) -> None:
        """Bootstrap the cookie session and cache resort / type metadata. Idempotent."""
        if self._initialized:
            return

        client = await self._get_client()
        logger.info("Initializing Holiday Park client...")

        try:
            await client.get("/")
            response = await client.get(APP_DATA_PATH)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Holiday Park app data error: {e.response.status_code} - {e.response.text[:200]}")
            raise BookingApiError("Failed to initialize Holiday Park client") from e
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Holiday Park initialization failed: {e}")
            raise BookingApiError("Failed to initialize Holiday Park client") from e

        for resort in data.get("resorts") or []:
            self.resorts[resort["id"]] = resort
        for accommodation_type in data.get("accommodation_types") or []:
            self.accommodation_types[accommodation_type["id"]] = accommodation_type

        self._initialized = True
        logger.info(
            f"Holiday Park client initialized. Loaded {len(self.resorts)} resorts "
            f"and {len(self.accommodation_types)} accommodation types"
        )

    async def check_availability(
        self,
        date_from: str,
        date_to: str,
        resort_ids: Optional[List[int]] = None,
        accommodation_type_ids: Optional[List[int]] = None,
    ) -> List[Availability]:
        """
        Offers for a stay from date_from to date_to (YYYY-MM-DD).

        Args:
            resort_ids: Only keep these resorts (None = all)
            accommodation_type_ids: Only keep these types (None = all)

        Raises:
            BookingApiError: on transport errors, non-2xx answers or unreadable bodies
        """
        await self.initialize()
        client = await self._get_client()

        logger.debug(f"Checking availability from {date_from} to {date_to}")
        try:
            response = await client.post(
                CHECK_AVAILABILITY_PATH,
                json={"date_from": date_from, "date_to": date_to},
            )
            response.raise_for_status()
            items = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Holiday Park API error: {e.response.status_code} - {e.response.text[:200]}")
            raise BookingApiError(
                f"Availability check failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"Holiday Park request failed: {e}")
            raise BookingApiError(f"Availability check failed: {e}") from e

        nights = calculate_nights(date_from, date_to)
        availabilities = []

        for item in items or []:
            resort_id = item.get("resort_id")
            type_id = item.get("accommodation_type_id")

            if resort_ids and resort_id not in resort_ids:
                continue
            if accommodation_type_ids and type_id not in accommodation_type_ids:
                continue
            if not item.get("is_open"):
                continue

            price_per_night = float(item.get("price_brutto_avg") or 0)

            if item.get("available"):
                availabilities.append(
                    self._build_availability(item, date_from, date_to, nights, price_per_night)
                )
                continue

            for window in item.get("available_dates") or []:
                window_from = window.get("date_from")
                window_to = window.get("date_to")
                if not window_from or not window_to:
                    continue
                # ISO dates compare correctly as strings
                if not (date_from <= window_to and date_to >= window_from):
                    continue

                overlap_from = max(date_from, window_from)
                overlap_to = min(date_to, window_to)
                overlap_nights = calculate_nights(overlap_from, overlap_to)
                if overlap_nights == nights:
                    availabilities.append(
                        self._build_availability(
                            item, overlap_from, overlap_to, overlap_nights, price_per_night
                        )
                    )

        logger.debug(f"Found {len(availabilities)} availabilities")
        return availabilities

    async def get_resort_details(self, resort_id: int, date_from: str, date_to: str) -> Optional[dict]:
        await self.initialize()
        client = await self._get_client()

        try:
            response = await client.get(
                f"/api/reservation/resorts/{resort_id}/",
                params={"date_from": date_from, "date_to": date_to},
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get resort {resort_id} details: {e}")
            return None

    def _build_availability(
        self,
        item: dict,
        date_from: str,
        date_to: str,
        nights: int,
        price_per_night: float,
    ) -> Availability:
        resort_id = item["resort_id"]
        type_id = item["accommodation_type_id"]
        return Availability(
            resort_id=resort_id,
            resort_name=self.resort_name(resort_id),
            accommodation_type_id=type_id,
            accommodation_type_name=self.accommodation_type_name(type_id),
            date_from=date_from,
            date_to=date_to,
            nights=nights,
            price_total=price_per_night * nights,
            price_per_night=price_per_night,
            available=True,
            link=self.booking_link(resort_id, type_id, date_from, date_to),
        )

    def resort_name(self, resort_id: int) -> str:
        cached = self.resorts.get(resort_id) or {}
        return cached.get("name") or RESORT_NAMES.get(resort_id) or f"Resort {resort_id}"

    def accommodation_type_name(self, type_id: int) -> str:
        cached = self.accommodation_types.get(type_id) or {}
        return cached.get("name") or ACCOMMODATION_TYPE_NAMES.get(type_id) or f"Type {type_id}"

    def booking_link(self, resort_id: int, type_id: int, date_from: str, date_to: str) -> str:
        slug = (self.resorts.get(resort_id) or {}).get("slug", "")
        return (
            f"{self.base_url}/rezerwacja/{slug}"
            f"?date_from={date_from}&date_to={date_to}&accommodation_type={type_id}"
        )
