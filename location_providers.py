"""
Image and location providers for the daily challenge.

Two interchangeable sources are supported: the Bing image of the day archive,
browsed by a cyclic index, and random Google Maps points of interest.
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

import requests

from challenge_store import DailyChallengeImage, ImageSource
from errors import NoSuitableImage, QuotaExceeded

logger = logging.getLogger(__name__)

# The Bing archive only serves the last 8 images of the day
IMAGE_COUNT = 8

# Maximum random locations tried before giving up on Google
MAX_ATTEMPTS = 50

DEFAULT_REQUEST_TIMEOUT = 10


def request_timeout(timeout: float, deadline: Optional[float]) -> float:
    """Per-request timeout, shortened so a request never outlives the deadline."""
    if deadline is None:
        return timeout
    return max(min(timeout, deadline - time.monotonic()), 0.01)


@dataclass
class LocationDetails:
    """Authoritative location of a chosen image."""
    latitude: float
    longitude: float
    extracted_location: str


class BingImageProvider:
    """Cycles through the Bing images of the day, one market region per index."""

    ARCHIVE_URL = "https://www.bing.com/HPImageArchive.aspx"
    LOCATIONS_URL = "https://dev.virtualearth.net/REST/v1/Locations"
    REGIONS = ['en-US', 'en-GB', 'en-AU', 'en-CA', 'en-IN', 'de-DE', 'fr-FR', 'ja-JP']

    source = ImageSource.BING

    def __init__(self, maps_key: Optional[str] = None, timeout: int = DEFAULT_REQUEST_TIMEOUT):
        self.maps_key = maps_key
        self.timeout = timeout

    def next_candidate(self, cursor: int, deadline: Optional[float] = None) -> DailyChallengeImage:
        """Get the image of the day for the given cursor position."""
        index = cursor % IMAGE_COUNT
        region = self.REGIONS[index % len(self.REGIONS)]
        response = requests.get(
            self.ARCHIVE_URL,
            params={'format': 'js', 'idx': index, 'n': 1, 'mkt': region},
            timeout=request_timeout(self.timeout, deadline)
        )
        response.raise_for_status()
        image = response.json()['images'][0]

        # "Moraine Lake, Banff National Park, Canada (© Photographer/Agency)"
        image_text = image.get('copyright', '').split(' (©')[0].strip()
        return DailyChallengeImage(
            url=f"https://www.bing.com{image['url']}",
            image_region=region,
            image_text=image_text,
            image_source=self.source
        )

    def resolve_location(self, label: str) -> Optional[LocationDetails]:
        """Look up the coordinates of an image label with Bing Maps."""
        response = requests.get(
            self.LOCATIONS_URL,
            params={'q': label, 'maxResults': 1, 'key': self.maps_key},
            timeout=self.timeout
        )
        response.raise_for_status()
        resource_sets = response.json().get('resourceSets') or []
        resources = resource_sets[0].get('resources', []) if resource_sets else []
        if not resources:
            logger.warning(f"Bing Maps found no location for '{label}'")
            return None

        location = resources[0]
        latitude, longitude = location['point']['coordinates']
        extracted = location.get('address', {}).get('formattedAddress') or location.get('name', label)
        return LocationDetails(latitude=latitude, longitude=longitude, extracted_location=extracted)


class GoogleMapsProvider:
    """Picks a random point of interest that has a photo on Google Maps."""

    NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
    PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"
    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    SEARCH_RADIUS = 50000

    source = ImageSource.GOOGLE

    def __init__(self, maps_key: Optional[str] = None, timeout: int = DEFAULT_REQUEST_TIMEOUT,
                 max_attempts: int = MAX_ATTEMPTS, rng: Optional[random.Random] = None):
        self.maps_key = maps_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.rng = rng or random.Random()

    def _check_status(self, payload: dict):
        if payload.get('status') == 'OVER_QUERY_LIMIT':
            raise QuotaExceeded(
                "The Google Maps search service has exceeded its usage.",
                source=self.source
            )

    def next_candidate(self, cursor: int = 0, deadline: Optional[float] = None) -> DailyChallengeImage:
        """Find a random place with a photo.

        The cursor is ignored; every call draws new random coordinates.
        No new search is started once the monotonic deadline has passed.

        Raises:
            NoSuitableImage: no place with a photo was found within max_attempts
            QuotaExceeded: Google reported that the query limit was reached
        """
        attempts = 0
        for attempt in range(1, self.max_attempts + 1):
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"Stopped looking for a Google image after {attempts} attempt(s), out of time")
                break
            attempts = attempt
            # Keep away from the poles where there is little to photograph
            latitude = self.rng.uniform(-60.0, 70.0)
            longitude = self.rng.uniform(-180.0, 180.0)
            response = requests.get(
                self.NEARBY_SEARCH_URL,
                params={
                    'location': f"{latitude},{longitude}",
                    'radius': self.SEARCH_RADIUS,
                    'type': 'tourist_attraction',
                    'key': self.maps_key
                },
                timeout=request_timeout(self.timeout, deadline)
            )
            response.raise_for_status()
            payload = response.json()
            self._check_status(payload)

            for place in payload.get('results', []):
                photos = place.get('photos')
                if not photos:
                    continue
                logger.info(f"Found Google image after {attempt} attempt(s): {place.get('name')}")
                vicinity = place.get('vicinity') or ''
                return DailyChallengeImage(
                    url=(f"{self.PHOTO_URL}?maxwidth=1600"
                         f"&photo_reference={photos[0]['photo_reference']}&key={self.maps_key}"),
                    image_region=vicinity.split(',')[-1].strip() or None,
                    image_text=f"{place['name']}, {vicinity}" if vicinity else place['name'],
                    image_source=self.source
                )

        raise NoSuitableImage(
            f"After trying {attempts} different locations, Google couldn't find a suitable image.",
            source=self.source
        )

    def resolve_location(self, label: str) -> Optional[LocationDetails]:
        """Geocode an image label with Google Maps."""
        response = requests.get(
            self.GEOCODE_URL,
            params={'address': label, 'key': self.maps_key},
            timeout=self.timeout
        )
        response.raise_for_status()
        payload = response.json()
        self._check_status(payload)

        results = payload.get('results') or []
        if not results:
            logger.warning(f"Google geocoding found no location for '{label}' ({payload.get('status')})")
            return None

        location = results[0]['geometry']['location']
        return LocationDetails(
            latitude=location['lat'],
            longitude=location['lng'],
            extracted_location=results[0].get('formatted_address', label)
        )


def build_providers(config: dict) -> dict:
    """Create both providers from the 'providers' section of the config."""
    providers_config = config.get('providers') or {}
    timeout = providers_config.get('request_timeout', DEFAULT_REQUEST_TIMEOUT)
    return {
        ImageSource.BING: BingImageProvider(providers_config.get('bing_maps_key'), timeout=timeout),
        ImageSource.GOOGLE: GoogleMapsProvider(providers_config.get('google_maps_key'), timeout=timeout)
    }
