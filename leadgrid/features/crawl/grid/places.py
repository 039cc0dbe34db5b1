"""
Built-in reference table of major cities used by named-place searches.

Coordinates are city centres; radius is the search half-width in degrees.
"""

from typing import NamedTuple


class Place(NamedTuple):
    name: str
    lat: float
    lng: float
    radius: float


PLACES: dict[str, list[Place]] = {
    "China": [
        Place("Beijing", 39.9042, 116.4074, 0.3),
        Place("Shanghai", 31.2304, 121.4737, 0.3),
        Place("Guangzhou", 23.1291, 113.2644, 0.25),
        Place("Shenzhen", 22.5431, 114.0579, 0.2),
        Place("Hangzhou", 30.2741, 120.1551, 0.2),
        Place("Chengdu", 30.5728, 104.0668, 0.25),
    ],
    "United States": [
        Place("New York", 40.7128, -74.0060, 0.3),
        Place("Los Angeles", 34.0522, -118.2437, 0.4),
        Place("Chicago", 41.8781, -87.6298, 0.3),
        Place("Houston", 29.7604, -95.3698, 0.3),
        Place("Phoenix", 33.4484, -112.0740, 0.3),
        Place("Philadelphia", 39.9526, -75.1652, 0.25),
        Place("Dallas", 32.7767, -96.7970, 0.3),
        Place("San Francisco", 37.7749, -122.4194, 0.2),
        Place("Seattle", 47.6062, -122.3321, 0.2),
        Place("Boston", 42.3601, -71.0589, 0.2),
        Place("Miami", 25.7617, -80.1918, 0.2),
    ],
    "United Kingdom": [
        Place("London", 51.5074, -0.1278, 0.3),
        Place("Manchester", 53.4808, -2.2426, 0.2),
        Place("Birmingham", 52.4862, -1.8904, 0.2),
        Place("Glasgow", 55.8642, -4.2518, 0.15),
        Place("Edinburgh", 55.9533, -3.1883, 0.15),
    ],
    "France": [
        Place("Paris", 48.8566, 2.3522, 0.3),
        Place("Marseille", 43.2965, 5.3698, 0.2),
        Place("Lyon", 45.7640, 4.8357, 0.2),
        Place("Toulouse", 43.6047, 1.4442, 0.15),
    ],
    "Germany": [
        Place("Berlin", 52.5200, 13.4050, 0.3),
        Place("Hamburg", 53.5511, 9.9937, 0.2),
        Place("Munich", 48.1351, 11.5820, 0.2),
        Place("Frankfurt", 50.1109, 8.6821, 0.15),
        Place("Cologne", 50.9375, 6.9603, 0.15),
    ],
    "Japan": [
        Place("Tokyo", 35.6762, 139.6503, 0.35),
        Place("Osaka", 34.6937, 135.5023, 0.25),
        Place("Nagoya", 35.1815, 136.9066, 0.2),
        Place("Fukuoka", 33.5904, 130.4017, 0.15),
    ],
    "Australia": [
        Place("Sydney", -33.8688, 151.2093, 0.3),
        Place("Melbourne", -37.8136, 144.9631, 0.3),
        Place("Brisbane", -27.4698, 153.0251, 0.2),
        Place("Perth", -31.9505, 115.8605, 0.2),
    ],
    "Canada": [
        Place("Toronto", 43.6532, -79.3832, 0.3),
        Place("Vancouver", 49.2827, -123.1207, 0.2),
        Place("Montreal", 45.5017, -73.5673, 0.2),
        Place("Calgary", 51.0447, -114.0719, 0.2),
    ],
    "Italy": [
        Place("Rome", 41.9028, 12.4964, 0.25),
        Place("Milan", 45.4642, 9.1900, 0.2),
        Place("Naples", 40.8518, 14.2681, 0.15),
    ],
    "Spain": [
        Place("Madrid", 40.4168, -3.7038, 0.25),
        Place("Barcelona", 41.3851, 2.1734, 0.2),
        Place("Valencia", 39.4699, -0.3763, 0.15),
    ],
    "India": [
        Place("Mumbai", 19.0760, 72.8777, 0.3),
        Place("Delhi", 28.7041, 77.1025, 0.3),
        Place("Bangalore", 12.9716, 77.5946, 0.25),
    ],
    "Brazil": [
        Place("Sao Paulo", -23.5505, -46.6333, 0.35),
        Place("Rio de Janeiro", -22.9068, -43.1729, 0.3),
    ],
    "Singapore": [
        Place("Singapore", 1.3521, 103.8198, 0.15),
    ],
    "United Arab Emirates": [
        Place("Dubai", 25.2048, 55.2708, 0.25),
        Place("Abu Dhabi", 24.4539, 54.3773, 0.2),
    ],
    "Netherlands": [
        Place("Amsterdam", 52.3676, 4.9041, 0.15),
        Place("Rotterdam", 51.9244, 4.4777, 0.15),
    ],
    "Mexico": [
        Place("Mexico City", 19.4326, -99.1332, 0.3),
        Place("Guadalajara", 20.6597, -103.3496, 0.2),
    ],
}


def find_place(country: str, city: str) -> Place | None:
    """Case-insensitive lookup of (country, city); None when either is unknown."""
    country_key = country.strip().casefold()
    city_key = city.strip().casefold()
    for name, places in PLACES.items():
        if name.casefold() != country_key:
            continue
        for place in places:
            if place.name.casefold() == city_key:
                return place
        return None
    return None
