"""HTTP client for the calendar-domain source APIs."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

import requests

from processor.models import SOURCE_NAMES

logger = logging.getLogger(__name__)


def proxies_from_env(environ: Mapping[str, str]) -> Optional[Dict[str, str]]:
    """
    Build a requests proxy mapping from HTTPS_PROXY / HTTP_PROXY.

    Either variable also serves the other scheme when only one is set.
    Returns None when neither is set.
    """
    https_proxy = environ.get('HTTPS_PROXY') or environ.get('https_proxy')
    http_proxy = environ.get('HTTP_PROXY') or environ.get('http_proxy')
    if not https_proxy and not http_proxy:
        return None
    return {
        'http': http_proxy or https_proxy,
        'https': https_proxy or http_proxy,
    }


def date_range(start_date: str, end_date: str) -> List[str]:
    """Dates from start_date through end_date inclusive, as YYYY-MM-DD."""
    current = datetime.strptime(start_date, '%Y-%m-%d').date()
    end = datetime.strptime(end_date, '%Y-%m-%d').date()
    dates = []
    while current <= end:
        dates.append(current.strftime('%Y-%m-%d'))
        current += timedelta(days=1)
    return dates


class TimelessApiClient:
    """Client fetching the per-date source documents."""

    BASE_URL = "https://api.timelessq.com/time"
    HOLIDAYS_URL = "https://api.jiejiariapi.com/v1/holidays"
    SOURCES = SOURCE_NAMES

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30, proxies: Optional[Dict[str, str]] = None):
        """
        Initialize the API client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            proxies: Optional requests proxy mapping
        """
        self.timeout = timeout
        self.proxies = proxies

    @staticmethod
    def today(timezone: str = 'Asia/Shanghai') -> str:
        """Current date in ``timezone`` as YYYY-MM-DD."""
        return datetime.now(ZoneInfo(timezone)).strftime('%Y-%m-%d')

    def _requests_for(self, date_str: str) -> Dict[str, tuple]:
        year = date_str.split('-')[0]
        return {
            'calendar': (self.BASE_URL, {'datetime': date_str}),
            'astro': (f"{self.BASE_URL}/astro", {'keyword': date_str}),
            'shichen': (f"{self.BASE_URL}/shichen", {'date': date_str}),
            'jieqi': (f"{self.BASE_URL}/jieqi", {'year': year}),
            'holidays': (f"{self.HOLIDAYS_URL}/{year}", {}),
        }

    def fetch_documents(self, date_str: str) -> Dict[str, Dict[str, Any]]:
        """
        Fetch every source document for a date in parallel.

        Args:
            date_str: Date in YYYY-MM-DD format

        Returns:
            Mapping of source name to document, in source order. A source
            that could not be fetched maps to an empty dict.
        """
        logger.info(f"Fetching source documents for {date_str}")
        plan = self._requests_for(date_str)

        with ThreadPoolExecutor(max_workers=len(self.SOURCES)) as executor:
            futures = {
                source: executor.submit(self._safe_fetch, source, *plan[source])
                for source in self.SOURCES
            }
            documents = {source: futures[source].result() for source in self.SOURCES}

        fetched = sum(1 for document in documents.values() if document)
        logger.info(f"Fetched {fetched}/{len(self.SOURCES)} documents for {date_str}")
        return documents

    def _safe_fetch(self, source: str, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            return self.fetch_json(url, params)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Giving up on {source} document: {e}")
            return {}

    def fetch_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Fetch a JSON object with retry logic.

        Args:
            url: Endpoint URL
            params: Query parameters

        Returns:
            Decoded JSON object

        Raises:
            requests.RequestException: If all retry attempts fail on transport
            ValueError: If the last attempt returned something other than a JSON object
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(f"Requesting {url} (attempt {attempt + 1}/{self.MAX_RETRIES})")
                response = requests.get(
                    url,
                    params=params,
                    timeout=self.timeout,
                    proxies=self.proxies
                )
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError(f"Expected a JSON object from {url}, got {type(data).__name__}")
                return data

            except (requests.RequestException, ValueError) as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise
