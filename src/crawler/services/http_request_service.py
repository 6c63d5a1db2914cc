# src/crawler/services/http_request_service.py
import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

import aiohttp
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class HttpRequestService:
    """
    Central service for GET requests against the snapshot origin.
    Owns the aiohttp session and the concurrency semaphore. Redirects are
    followed by hand so the caller always learns the final status.
    """

    def __init__(self, config: Dict, user_agent: str):
        self.config = config
        self.user_agent = user_agent

        session_config = config.get('session', {})
        self.max_concurrency = int(session_config.get('concurrency', 4))
        self.timeout = int(session_config.get('time_out', 30))
        self.max_redirects = int(session_config.get('max_redirects', 10))
        self.read_timeout = float(session_config.get('client_read_timeout', 15.0))

        self.semaphore = asyncio.Semaphore(self.max_concurrency)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self):
        if not self.session or self.session.closed:
            timeout_obj = aiohttp.ClientTimeout(total=self.timeout)
            default_headers = {
                'Accept-Encoding': 'gzip, deflate',
                'User-Agent': self.user_agent
            }
            self.session = aiohttp.ClientSession(
                timeout=timeout_obj, headers=default_headers
            )
            logger.debug("HttpRequestService: Session initialized.")

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
            logger.debug("HttpRequestService: Session closed.")

    async def perform_request(self, url: str) -> dict:
        """
        Issues a GET for url inside the semaphore and returns a status dict:
        status, headers, content (bytes or None), redirect_chain, final_url.
        Negative statuses mark transport-level failures and carry an 'error'.
        """
        start_time = time.perf_counter()

        if not self.session or self.session.closed:
            await self.initialize()

        response_data = None
        try:
            async with self.semaphore:
                response_data = await self._execute_get(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            response_data = {"status": -1, "error": str(e) or type(e).__name__}
        except Exception as e:
            response_data = {"status": -2, "error": str(e)}
        finally:
            if response_data is not None:
                response_data["elapsed_time"] = round(time.perf_counter() - start_time, 4)

        return response_data if response_data else {"status": -99, "error": "Unknown failure"}

    async def get_text(self, url: str) -> Optional[str]:
        """Body of a successful GET decoded as text, or None (failure already logged)."""
        text, _ = await self.get_text_and_url(url)
        return text

    async def get_text_and_url(self, url: str) -> Tuple[Optional[str], str]:
        """Like get_text, plus the URL the body was finally served from (after redirects)."""
        result = await self.perform_request(url)
        status = result.get("status", -99)
        content = result.get("content")
        final_url = result.get("final_url") or url
        if not (200 <= status < 300) or content is None:
            logger.warning("GET %s failed: %s %s", url, status, result.get("error", ""))
            return None, final_url
        return self.decode(content, result.get("headers", {})), final_url

    @staticmethod
    def decode(content: bytes, headers: Dict[str, str]) -> str:
        charset = "utf-8"
        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        for part in content_type.split(";")[1:]:
            key, _, value = part.strip().partition("=")
            if key.lower() == "charset" and value:
                charset = value.strip('"\'')
        try:
            return content.decode(charset, errors="replace")
        except LookupError:
            return content.decode("utf-8", errors="replace")

    # =========================================================================
    #  GET REQUEST LOGIC
    # =========================================================================
    async def _execute_get(self, url: str) -> dict:
        """
        1. Sends GET without automatic redirects.
        2. On 3xx re-issues the GET at the Location target (loop-safe, bounded).
        3. Reads the body of the final 2xx response.
        """
        redirect_chain = []
        visited = {url}
        current_url = url

        for _ in range(self.max_redirects + 1):
            async with self.session.get(current_url, allow_redirects=False) as response:
                status = response.status
                headers = dict(response.headers)
                location = response.headers.get('Location')

                if status in REDIRECT_STATUSES and location:
                    next_url = urljoin(current_url, location)
                    redirect_chain.append({'source': current_url, 'target': next_url, 'status': status})
                    if next_url in visited:
                        return {
                            "status": -3, "error": "Redirect loop", "headers": headers,
                            "content": None, "redirect_chain": redirect_chain, "final_url": next_url,
                        }
                    visited.add(next_url)
                    current_url = next_url
                    continue

                content = None
                if 200 <= status < 300:
                    content = await self._read_content(response)

                return {
                    "status": status,
                    "headers": headers,
                    "content": content,
                    "redirect_chain": redirect_chain,
                    "final_url": current_url,
                }

        return {
            "status": -4, "error": f"More than {self.max_redirects} redirects", "headers": {},
            "content": None, "redirect_chain": redirect_chain, "final_url": current_url,
        }

    async def _read_content(self, response: aiohttp.ClientResponse) -> bytes:
        """Raises asyncio.TimeoutError when the body does not arrive in time."""
        return await asyncio.wait_for(response.read(), timeout=self.read_timeout)
