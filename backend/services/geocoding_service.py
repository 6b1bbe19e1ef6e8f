"""
Geocoding Service - Reverse Geocoding with OpenStreetMap Nominatim

Fills in a readable address for citizen reports submitted with only a map pin.

Features:
- OpenStreetMap Nominatim API (free, no API key)
- Realtime Database cache under geocoding_cache/ (30-day TTL)
- 1 request/second pacing as required by the Nominatim usage policy
- Never raises: failures return None and the report keeps its coordinates
"""

import requests
import time
from typing import Dict, Optional
import logging
from firebase_admin import db

from utils.geo import is_valid_coordinates
from utils.secure_logging import redact_coordinates

logger = logging.getLogger(__name__)

CACHE_TTL_DAYS = 30


class GeocodingService:
    """
    Reverse geocoding with caching

    Usage:
        service = GeocodingService(base_url, enabled=True)
        location = service.reverse_geocode(-6.2088, 106.8456)
        # {'village': 'Menteng', 'city': 'Jakarta Pusat', 'state': 'DKI Jakarta', ...}
    """

    def __init__(self, base_url: str = "https://nominatim.openstreetmap.org/reverse",
                 enabled: bool = True, user_agent: str = 'ResponWarga/1.0'):
        self.base_url = base_url
        self.enabled = enabled
        self.user_agent = user_agent
        self.last_request_time = 0
        self.rate_limit_delay = 1.0

    @staticmethod
    def cache_key(latitude: float, longitude: float) -> str:
        """
        Realtime Database safe key (4 decimals, about 11 m)

        Examples:
            >>> GeocodingService.cache_key(-6.20881, 106.84559)
            'geocode_n6_2088_106_8456'
        """
        return f"geocode_{latitude:.4f}_{longitude:.4f}".replace('.', '_').replace('-', 'n')

    def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Dict]:
        """
        Convert coordinates to an address

        Returns:
            Dict with 'village', 'district', 'city', 'state', 'country',
            'display_name' and 'full_address', or None when unavailable
        """
        if not self.enabled:
            return None

        if not is_valid_coordinates(latitude, longitude):
            logger.warning("Reverse geocoding skipped: invalid coordinates")
            return None

        latitude, longitude = float(latitude), float(longitude)
        key = self.cache_key(latitude, longitude)
        cached = self._get_from_cache(key)
        if cached:
            return cached

        elapsed = time.time() - self.last_request_time
        if elapsed < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - elapsed)

        lat_str, lon_str = redact_coordinates(latitude, longitude)
        try:
            response = requests.get(
                self.base_url,
                params={
                    'lat': latitude,
                    'lon': longitude,
                    'format': 'json',
                    'addressdetails': 1,
                    'accept-language': 'id'
                },
                headers={'User-Agent': self.user_agent},
                timeout=5
            )
            self.last_request_time = time.time()

            if response.status_code != 200:
                logger.warning(f"Geocoding API error {response.status_code} near {lat_str}, {lon_str}")
                return None

            result = self._parse_nominatim_response(response.json())
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Geocoding error near {lat_str}, {lon_str}: {e}")
            return None

        self._save_to_cache(key, result)
        return result

    def address_for(self, latitude: float, longitude: float) -> Optional[str]:
        """Full address string for a point, or None"""
        location = self.reverse_geocode(latitude, longitude)
        if not location:
            return None
        return location.get('full_address') or location.get('display_name')

    @staticmethod
    def _parse_nominatim_response(data: Dict) -> Dict:
        """Pick the Indonesian administrative levels out of a Nominatim address"""
        address = data.get('address', {})

        village = address.get('village') or address.get('suburb') or address.get('neighbourhood')
        district = address.get('city_district') or address.get('district') or address.get('town')
        city = address.get('city') or address.get('county') or address.get('regency') or address.get('municipality')
        state = address.get('state')
        country = address.get('country')

        parts = [p for p in (village, district, city, state) if p]
        return {
            'village': village,
            'district': district,
            'city': city,
            'state': state,
            'country': country,
            'display_name': ", ".join(parts) if parts else "Lokasi tidak diketahui",
            'full_address': data.get('display_name', '')
        }

    def _get_from_cache(self, key: str) -> Optional[Dict]:
        try:
            cached = db.reference(f'geocoding_cache/{key}').get()
        except Exception as e:
            logger.error(f"Geocoding cache read error: {e}")
            return None

        if not cached:
            return None

        age_days = (time.time() - cached.get('cached_at', 0)) / 86400
        if age_days > cached.get('ttl_days', CACHE_TTL_DAYS):
            return None

        logger.debug(f"Geocoding cache HIT: {key}")
        return {k: v for k, v in cached.items() if k not in ('cached_at', 'ttl_days')}

    def _save_to_cache(self, key: str, data: Dict):
        try:
            db.reference(f'geocoding_cache/{key}').set({
                **data,
                'cached_at': time.time(),
                'ttl_days': CACHE_TTL_DAYS
            })
        except Exception as e:
            logger.error(f"Geocoding cache write error: {e}")
