"""
Fetches the challenge image and decodes it into an RGBA raster.

Supported locators:
    https://... / http://...   downloaded
    data:image/...;base64,...  decoded inline
    screen:left,top,w,h        captured from the screen
    anything else              read as a local file path
"""

import io
import base64
import asyncio
import urllib.request
import urllib.error
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import FetchFailure
from .raster import Raster
from .screenshot import ScreenRegion, get_screen_capture


USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"


def decode_image(payload: bytes, source: str = "image") -> Raster:
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.load()
            return Raster.from_image(image)
    except (UnidentifiedImageError, OSError) as exc:
        raise FetchFailure(f"Could not decode {source}: {exc}") from exc


def _decode_data_url(locator: str) -> bytes:
    header, sep, data = locator.partition(",")
    if not sep or ";base64" not in header:
        raise FetchFailure("Only base64 data URLs are supported")
    try:
        return base64.b64decode(data, validate=False)
    except ValueError as exc:
        raise FetchFailure(f"Invalid base64 in data URL: {exc}") from exc


class ImageSource:
    """Resolves an image locator into a Raster."""

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout

    def _download(self, url: str) -> bytes:
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            raise FetchFailure(f"HTTP {exc.code} while fetching {url}") from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise FetchFailure(f"Failed to fetch {url}: {exc}") from exc

    def _capture(self, region_text: str) -> Raster:
        try:
            region = ScreenRegion.parse(region_text)
        except ValueError as exc:
            raise FetchFailure(str(exc)) from exc
        try:
            return get_screen_capture().capture_raster(region)
        except Exception as exc:
            raise FetchFailure(f"Screen capture failed for {region_text}: {exc}") from exc

    def _read_file(self, locator: str) -> bytes:
        path = Path(locator).expanduser()
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchFailure(f"Could not read image file {path}: {exc}") from exc

    async def fetch(self, locator: Optional[str]) -> Raster:
        """
        Load the image a locator points at.

        Raises:
            FetchFailure: empty locator, unreachable source or undecodable bytes
        """
        if not locator:
            raise FetchFailure("No image locator supplied")

        if locator.startswith(("http://", "https://")):
            payload = await asyncio.to_thread(self._download, locator)
            return decode_image(payload, locator)
        if locator.startswith("data:"):
            return decode_image(_decode_data_url(locator), "data URL")
        if locator.startswith("screen:"):
            return await asyncio.to_thread(self._capture, locator[len("screen:"):])
        payload = await asyncio.to_thread(self._read_file, locator)
        return decode_image(payload, locator)
