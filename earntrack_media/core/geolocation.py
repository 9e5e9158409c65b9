"""IP geolocation for access logs.

Resolves a viewer's country when the player did not report one. Uses a
local MaxMind database when ``geoip2`` and a database file are available,
otherwise the free ip-api.com service.
"""

import ipaddress
import logging
import os
from collections import OrderedDict
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Most recently used lookups kept in memory
COUNTRY_CACHE_SIZE = 10000
_country_cache: "OrderedDict[str, Optional[str]]" = OrderedDict()


def _is_public(ip_address: str) -> bool:
    try:
        return ipaddress.ip_address(ip_address).is_global
    except ValueError:
        return False


async def get_country_from_ip(ip_address: str, geoip_db_path: str = "") -> Optional[str]:
    """Get the ISO 3166-1 alpha-2 country code for an IP address.

    Returns None for private, loopback or unparsable addresses and when
    every lookup fails.
    """
    if not ip_address or not _is_public(ip_address):
        return None

    if ip_address in _country_cache:
        _country_cache.move_to_end(ip_address)
        return _country_cache[ip_address]

    country = _get_country_geoip2(ip_address, geoip_db_path)
    if country is None:
        country = await _get_country_from_api(ip_address)

    _country_cache[ip_address] = country
    if len(_country_cache) > COUNTRY_CACHE_SIZE:
        _country_cache.popitem(last=False)
    return country


def _get_country_geoip2(ip_address: str, db_path: str) -> Optional[str]:
    if not db_path or not os.path.exists(db_path):
        return None
    try:
        import geoip2.database
        import geoip2.errors
    except ImportError:
        return None

    try:
        with geoip2.database.Reader(db_path) as reader:
            return reader.country(ip_address).country.iso_code
    except (geoip2.errors.AddressNotFoundError, ValueError, OSError):
        return None


async def _get_country_from_api(ip_address: str) -> Optional[str]:
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f"http://ip-api.com/json/{ip_address}",
                params={"fields": "countryCode,status"},
            )
    except httpx.HTTPError as e:
        logger.warning(f"IP geolocation API failed for {ip_address}: {e}")
        return None

    if response.status_code != 200:
        return None
    data = response.json()
    if data.get("status") == "success":
        return data.get("countryCode")
    return None


def get_client_ip(request) -> str:
    """Client address of a request.

    First entry of X-Forwarded-For, else the socket peer, else ``"unknown"``.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    if request.client and request.client.host:
        return request.client.host

    return "unknown"
