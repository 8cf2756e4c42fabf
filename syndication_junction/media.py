"""
Media relocation for published feeds.

Downloads media referenced by items and rewrites the references so they
point at a locally served copy instead of the original host.
"""
import html
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from syndication_junction.models import Item

logger = logging.getLogger(__name__)

HTTP_SCHEMES = ("https://", "http://")


class MediaFetchError(Exception):
    """Raised when a media file cannot be downloaded or stored."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class MediaFetcher:
    """
    Downloads media files into a local directory.

    A file's path under media_dir is its URL without the scheme, so the
    same URL always lands in the same place. Each URL is fetched at most
    once per fetcher.
    """

    DEFAULT_USER_AGENT = "Syndication-Junction/1.0 (media fetcher)"

    def __init__(
        self,
        media_dir: Path = Path("output/media"),
        timeout: int = 30,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize media fetcher.

        Args:
            media_dir: Directory downloads are written under
            timeout: Request timeout in seconds
            user_agent: Custom User-Agent string
        """
        self.media_dir = Path(media_dir)
        self.timeout = timeout
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self._fetched: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._url_locks: Dict[str, threading.Lock] = {}

    @staticmethod
    def local_path_for(url: str) -> str:
        """
        Derive the relative storage path for a URL.

        Args:
            url: http(s) media URL

        Returns:
            The URL without its scheme, e.g. "example.com/img/a.png"

        Raises:
            MediaFetchError: If the URL is not http(s) or would escape media_dir
        """
        for scheme in HTTP_SCHEMES:
            if url.startswith(scheme):
                path = url[len(scheme):]
                break
        else:
            raise MediaFetchError(f"Unsupported media URL: {url}", url=url)

        segments = path.split("/")
        if not segments[0] or not segments[-1] or any(s in (".", "..") for s in segments):
            raise MediaFetchError(f"Cannot derive a file path from media URL: {url}", url=url)
        return path

    def fetch(self, url: str) -> str:
        """
        Download a media file unless it was already fetched.

        Concurrent calls for the same URL wait for the first download
        instead of writing the same file twice.

        Args:
            url: Media URL

        Returns:
            Path of the stored file, relative to media_dir

        Raises:
            MediaFetchError: On request, status or file errors
        """
        with self._lock:
            url_lock = self._url_locks.setdefault(url, threading.Lock())

        with url_lock:
            if url in self._fetched:
                return self._fetched[url]
            relative_path = self._download(url)
            self._fetched[url] = relative_path
            return relative_path

    def _download(self, url: str) -> str:
        relative_path = self.local_path_for(url)
        target = self.media_dir / relative_path

        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                stream=True,
            )
        except requests.RequestException as e:
            raise MediaFetchError(f"Error making request: {e}", url=url) from e

        try:
            if response.status_code != 200:
                raise MediaFetchError(
                    f"Request returned non-successful status code: {response.status_code}",
                    url=url,
                    status_code=response.status_code,
                )
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
        except OSError as e:
            raise MediaFetchError(f"Error writing file {target}: {e}", url=url) from e
        except requests.RequestException as e:
            raise MediaFetchError(f"Error reading response: {e}", url=url) from e
        finally:
            response.close()

        logger.info(f"Finished downloading file: {relative_path}")
        return relative_path


def image_sources(markup: Optional[str]) -> List[str]:
    """src attributes of every <img> in an HTML fragment."""
    if not markup:
        return []
    soup = BeautifulSoup(markup, "html.parser")
    return [img["src"] for img in soup.find_all("img") if img.get("src")]


@dataclass
class RelocationReport:
    """Outcome of a relocation pass."""
    relocated: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)  # (url, reason)


class MediaRelocator:
    """
    Rewrites item media references to locally stored copies.

    Looks at the structured media list and at <img> tags in both the body
    and the rich body. Failures leave the original reference in place.
    """

    def __init__(self, fetcher: MediaFetcher, max_workers: int = 4):
        """
        Initialize media relocator.

        Args:
            fetcher: MediaFetcher used for downloads
            max_workers: Maximum concurrent downloads
        """
        self.fetcher = fetcher
        self.max_workers = max_workers

    def media_urls(self, item: Item) -> List[str]:
        """Distinct http(s) media URLs referenced by an item, in order found."""
        candidates = [asset.url for asset in item.media]
        candidates += image_sources(item.body)
        candidates += image_sources(item.rich_body)

        urls = []
        for url in candidates:
            if not url.startswith(HTTP_SCHEMES):
                logger.debug(f"Skipping non-HTTP media reference: {url[:80]}")
                continue
            if url not in urls:
                urls.append(url)
        return urls

    @staticmethod
    def rewrite(item: Item, url: str, local_path: str, host_prefix: str):
        """
        Point every reference to url at host_prefix + local_path.

        Text fields get a percent-encoded path; structured assets get the
        scheme replaced by the prefix.
        """
        for asset in item.media:
            if asset.url == url:
                asset.url = host_prefix + local_path

        served = host_prefix + quote(local_path, safe="/")
        for name in ("body", "rich_body"):
            text = getattr(item, name)
            if not text:
                continue
            # The same URL may appear attribute-escaped in markup
            text = text.replace(html.escape(url), served).replace(url, served)
            setattr(item, name, text)

    def relocate(self, item: Item, host_prefix: str) -> RelocationReport:
        """
        Relocate the media of a single item in place.

        Args:
            item: Item to rewrite
            host_prefix: Public URL prefix the media directory is served at

        Returns:
            RelocationReport
        """
        return self.relocate_all([item], host_prefix)

    def relocate_all(self, items: List[Item], host_prefix: str) -> RelocationReport:
        """
        Relocate the media of many items in place.

        Downloads run concurrently; rewrites of any one item are serialized
        by that item's lock.

        Args:
            items: Items to rewrite
            host_prefix: Public URL prefix the media directory is served at

        Returns:
            RelocationReport
        """
        report = RelocationReport()
        report_lock = threading.Lock()
        item_locks: Dict[int, threading.Lock] = {id(item): threading.Lock() for item in items}
        jobs = [(item, url) for item in items for url in self.media_urls(item)]

        if not jobs:
            return report

        def relocate_one(item: Item, url: str):
            try:
                local_path = self.fetcher.fetch(url)
            except MediaFetchError as e:
                logger.error(f"Failed to relocate {url}: {e}")
                with report_lock:
                    report.failures.append((url, str(e)))
                return
            with item_locks[id(item)]:
                self.rewrite(item, url, local_path, host_prefix)
            with report_lock:
                report.relocated += 1

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(jobs))) as executor:
            futures = [executor.submit(relocate_one, item, url) for item, url in jobs]
            for future in as_completed(futures):
                # relocate_one handles fetch failures; anything else is a bug
                future.result()

        logger.info(
            f"Relocated {report.relocated} media references "
            f"({len(report.failures)} failed)"
        )
        return report
