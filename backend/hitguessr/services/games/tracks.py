from __future__ import annotations

import base64
import random
import time
from typing import List, Optional

import requests

from .errors import UpstreamProviderError
from .types import Track

CATALOG: List[Track] = [
    Track('mock-track-1', 'Bohemian Rhapsody', 'Queen', 1975),
    Track('mock-track-2', 'Billie Jean', 'Michael Jackson', 1982),
    Track('mock-track-3', 'Smells Like Teen Spirit', 'Nirvana', 1991),
    Track('mock-track-4', 'Hey Jude', 'The Beatles', 1968),
    Track('mock-track-5', "Sweet Child O' Mine", "Guns N' Roses", 1987),
    Track('mock-track-6', 'Hotel California', 'Eagles', 1976),
    Track('mock-track-7', 'Like a Prayer', 'Madonna', 1989),
    Track('mock-track-8', 'Wonderwall', 'Oasis', 1995),
    Track('mock-track-9', 'Crazy in Love', 'Beyoncé', 2003),
    Track('mock-track-10', 'Rolling in the Deep', 'Adele', 2010),
    Track('mock-track-11', 'Blinding Lights', 'The Weeknd', 2019),
    Track('mock-track-12', 'Take On Me', 'a-ha', 1985),
]


class CatalogTrackProvider:
    """Serves rounds from a fixed catalog, used when no music API is configured."""

    def __init__(self, tracks: Optional[List[Track]] = None, rng: Optional[random.Random] = None):
        self._tracks = list(tracks if tracks is not None else CATALOG)
        self._rng = rng or random.Random()

    def fetch_rounds(self, count: int) -> List[Track]:
        return self._rng.sample(self._tracks, min(count, len(self._tracks)))


class SpotifyTrackProvider:
    token_url = 'https://accounts.spotify.com/api/token'
    api_url = 'https://api.spotify.com/v1'
    queries = [
        'year:1980-1989',
        'year:1990-1999',
        'year:2000-2009',
        'year:2010-2019',
        'genre:pop',
        'genre:rock',
        'genre:hip-hop',
        'genre:indie',
        'genre:electronic',
    ]

    def __init__(self, client_id: str, client_secret: str, market: str = 'US', min_popularity: int = 30,
                 session: Optional[requests.Session] = None, rng: Optional[random.Random] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.market = market
        self.min_popularity = min_popularity
        self.session = session or requests.Session()
        self._rng = rng or random.Random()
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    def _token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token
        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        r = self.session.post(
            self.token_url,
            data={'grant_type': 'client_credentials'},
            headers={'Authorization': f'Basic {credentials}'},
            timeout=15,
        )
        r.raise_for_status()
        data = r.json()
        self._access_token = data['access_token']
        # Refresh one minute early
        self._token_expires_at = time.time() + int(data.get('expires_in', 3600)) - 60
        return self._access_token

    def search_tracks(self, query: str, limit: int = 50) -> List[dict]:
        r = self.session.get(
            f"{self.api_url}/search",
            params={'q': query, 'type': 'track', 'limit': limit, 'market': self.market},
            headers={'Authorization': f'Bearer {self._token()}'},
            timeout=15,
        )
        r.raise_for_status()
        items = (r.json().get('tracks') or {}).get('items') or []
        return [t for t in items if t.get('preview_url') and (t.get('popularity') or 0) > self.min_popularity]

    def fetch_rounds(self, count: int) -> List[Track]:
        query = self._rng.choice(self.queries)
        try:
            items = self.search_tracks(query)
            tracks = [to_track(item) for item in items]
        except (requests.RequestException, KeyError, ValueError) as exc:
            raise UpstreamProviderError('Failed to fetch tracks') from exc
        self._rng.shuffle(tracks)
        return tracks[:count]


def to_track(item: dict) -> Track:
    album = item.get('album') or {}
    artists = item.get('artists') or []
    images = sorted(album.get('images') or [], key=lambda img: img.get('height') or 0, reverse=True)
    return Track(
        track_id=item['id'],
        title=item['name'],
        artist=artists[0]['name'] if artists else 'Unknown Artist',
        year=int(str(album.get('release_date', '')).split('-')[0]),
        preview_url=item.get('preview_url'),
        cover_url=images[0]['url'] if images else None,
    )


def build_track_provider(config):
    client_id = config.get('SPOTIFY_CLIENT_ID')
    client_secret = config.get('SPOTIFY_CLIENT_SECRET')
    if config.get('TRACK_PROVIDER') == 'spotify' and client_id and client_secret:
        return SpotifyTrackProvider(
            client_id,
            client_secret,
            market=config.get('SPOTIFY_MARKET', 'US'),
            min_popularity=int(config.get('SPOTIFY_MIN_POPULARITY', 30)),
        )
    return CatalogTrackProvider()
