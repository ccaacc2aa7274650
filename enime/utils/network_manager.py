import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp
from curl_cffi.requests import AsyncSession as CurlSession

from enime.core.execution import get_random, now
from enime.core.logger import logger
from enime.core.models import settings


def resolve_proxy_url(proxy_url: Optional[str]):
    """
    Swap the proxy hostname for its IP address.

    libcurl inside curl_cffi does not go through Python's resolver, so container
    service names have to be resolved before the URL is handed over.
    """
    if not proxy_url:
        return proxy_url

    parts = urlsplit(proxy_url)
    hostname = parts.hostname
    if not hostname:
        return proxy_url

    try:
        ipaddress.ip_address(hostname)
        return proxy_url
    except ValueError:
        pass

    try:
        ip = socket.gethostbyname(hostname)
    except OSError as e:
        logger.log("PROXY", f"Could not resolve proxy host {hostname}: {e}")
        return proxy_url

    netloc = parts.netloc.rsplit("@", 1)
    host_port = netloc[-1].replace(hostname, ip, 1)
    netloc = f"{netloc[0]}@{host_port}" if len(netloc) == 2 else host_port
    return urlunsplit(parts._replace(netloc=netloc))


@dataclass(frozen=True)
class EgressPoint:
    proxy_url: Optional[str] = None

    @property
    def is_direct(self):
        return self.proxy_url is None

    @property
    def label(self):
        if self.proxy_url is None:
            return "direct"
        parts = urlsplit(self.proxy_url)
        return f"{parts.hostname}:{parts.port}" if parts.port else str(parts.hostname)


DIRECT = EgressPoint()


class EgressProvider:
    """
    Rotating egress points for outbound scraper traffic.

    `acquire(attempt)` honours the proxy ethos: "never" always answers with the
    direct route, "on_failure" answers direct for the first attempt and a proxy
    for retries, "always" answers a proxy every time. Proxies reported as
    failing are skipped until their cooldown expires.
    """

    def __init__(
        self,
        proxy_urls: Optional[List[str]] = None,
        ethos: Optional[str] = None,
        cooldown: Optional[int] = None,
    ):
        self.proxy_urls = list(settings.PROXY_URLS if proxy_urls is None else proxy_urls)
        self.ethos = (ethos or settings.PROXY_ETHOS).lower()
        self.cooldown = settings.PROXY_FAILURE_COOLDOWN if cooldown is None else cooldown
        self.failed_until: Dict[str, float] = {}
        self._resolved: Dict[str, Optional[str]] = {}
        self._cursor = get_random().randrange(len(self.proxy_urls)) if self.proxy_urls else 0

        if not self.proxy_urls:
            self.ethos = "never"

    def acquire(self, attempt: int = 0) -> EgressPoint:
        if self.ethos == "never":
            return DIRECT
        if self.ethos == "on_failure" and attempt == 0:
            return DIRECT

        current_time = now()
        for _ in range(len(self.proxy_urls)):
            proxy_url = self.proxy_urls[self._cursor % len(self.proxy_urls)]
            self._cursor = (self._cursor + 1) % len(self.proxy_urls)

            if self.failed_until.get(proxy_url, 0) <= current_time:
                return EgressPoint(proxy_url)

        # Every proxy is cooling down, fall back to the one that recovers first
        proxy_url = min(self.proxy_urls, key=lambda url: self.failed_until.get(url, 0))
        return EgressPoint(proxy_url)

    def report_failure(self, point: EgressPoint):
        if point.is_direct:
            return

        self.failed_until[point.proxy_url] = now() + self.cooldown
        logger.log(
            "PROXY",
            f"Egress {point.label} failed, cooling down for {self.cooldown}s",
        )

    def resolved(self, point: EgressPoint) -> Optional[str]:
        if point.is_direct:
            return None
        if point.proxy_url not in self._resolved:
            self._resolved[point.proxy_url] = resolve_proxy_url(point.proxy_url)
        return self._resolved[point.proxy_url]

    def status(self):
        current_time = now()
        return {
            "ethos": self.ethos,
            "proxies": len(self.proxy_urls),
            "cooling_down": sum(
                1 for until in self.failed_until.values() if until > current_time
            ),
        }


class EgressResponse:
    """Same read API whichever HTTP backend answered."""

    def __init__(self, raw, from_curl: bool):
        self.raw = raw
        self.from_curl = from_curl

    @property
    def status(self):
        return self.raw.status_code if self.from_curl else self.raw.status

    @property
    def headers(self):
        return self.raw.headers

    async def text(self):
        return self.raw.text if self.from_curl else await self.raw.text()

    async def json(self):
        if self.from_curl:
            return self.raw.json()
        return await self.raw.json(content_type=None)


def retry_delay(response: EgressResponse, attempt: int, base_delay: float):
    try:
        delay = float(response.headers.get("Retry-After"))
    except (TypeError, ValueError):
        delay = base_delay * (2**attempt)
    return max(delay, base_delay)


class EgressRequest:
    """
    `async with client.get(...)` handle. The first attempt goes through the
    egress point for attempt 0; if it raises, the point is reported and the
    request is replayed once through the point for attempt 1.
    """

    def __init__(self, client: "EgressClient", method: str, url: str, **kwargs):
        self.client = client
        self.method = method
        self.url = url
        self.kwargs = kwargs
        self._aiohttp_request = None

    async def __aenter__(self) -> EgressResponse:
        provider = self.client.provider
        point = provider.acquire(0)
        try:
            return await self._send_with_backoff(point)
        except Exception as e:
            provider.report_failure(point)
            retry_point = provider.acquire(1)
            if retry_point.is_direct and point.is_direct:
                raise

            logger.log(
                "PROXY",
                f"[{self.client.scraper_name}] {self.method} {self.url} through {point.label} failed ({e}), retrying through {retry_point.label}",
            )
            await self._release()
            try:
                return await self._send_with_backoff(retry_point)
            except Exception:
                provider.report_failure(retry_point)
                raise

    async def __aexit__(self, exc_type, exc, tb):
        await self._release()

    async def _send(self, point: EgressPoint) -> EgressResponse:
        if self.client.impersonate:
            session = self.client.curl_session()
            raw = await session.request(
                self.method,
                self.url,
                proxy=self.client.provider.resolved(point),
                **self.kwargs,
            )
            return EgressResponse(raw, from_curl=True)

        session = self.client.aiohttp_session()
        self._aiohttp_request = session.request(
            self.method, self.url, proxy=point.proxy_url, **self.kwargs
        )
        raw = await self._aiohttp_request.__aenter__()
        return EgressResponse(raw, from_curl=False)

    async def _send_with_backoff(self, point: EgressPoint) -> EgressResponse:
        max_retries = max(0, settings.RATELIMIT_MAX_RETRIES)
        base_delay = settings.RATELIMIT_RETRY_BASE_DELAY

        attempt = 0
        while True:
            response = await self._send(point)
            if response.status != 429 or attempt >= max_retries:
                if response.status == 429:
                    logger.error(
                        f"[{self.client.scraper_name}] Still rate limited through {point.label} after {max_retries} retries"
                    )
                return response

            delay = retry_delay(response, attempt, base_delay)
            logger.warning(
                f"[{self.client.scraper_name}] 429 through {point.label}, retry {attempt + 1}/{max_retries} in {delay}s"
            )
            await self._release()
            await asyncio.sleep(delay)
            attempt += 1

    async def _release(self):
        if self._aiohttp_request is not None:
            await self._aiohttp_request.__aexit__(None, None, None)
            self._aiohttp_request = None


class EgressClient:
    """
    One scraper's HTTP client. Requests go out over curl_cffi when the site
    needs browser impersonation and over aiohttp otherwise, always through an
    egress point handed out by the provider.
    """

    def __init__(
        self,
        scraper_name: str,
        provider: EgressProvider,
        impersonate: Optional[str] = None,
        headers: Optional[dict] = None,
        timeout: Optional[int] = None,
    ):
        self.scraper_name = scraper_name
        self.provider = provider
        self.impersonate = impersonate
        self.headers = headers or {}
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._aiohttp: Optional[aiohttp.ClientSession] = None
        self._curl: Optional[CurlSession] = None

    def aiohttp_session(self) -> aiohttp.ClientSession:
        if self._aiohttp is None or self._aiohttp.closed:
            self._aiohttp = aiohttp.ClientSession(
                headers=self.headers, timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._aiohttp

    def curl_session(self) -> CurlSession:
        if self._curl is None:
            self._curl = CurlSession(
                headers=self.headers, impersonate=self.impersonate, timeout=self.timeout
            )
        return self._curl

    def request(self, method: str, url: str, **kwargs):
        return EgressRequest(self, method, url, **kwargs)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    async def close(self):
        if self._aiohttp is not None:
            await self._aiohttp.close()
            self._aiohttp = None
        if self._curl is not None:
            await self._curl.close()
            self._curl = None


class NetworkManager:
    """Hands out one `EgressClient` per scraper, all sharing one provider."""

    def __init__(self, provider: Optional[EgressProvider] = None):
        self.provider = provider or EgressProvider()
        self._clients: Dict[str, EgressClient] = {}

    def get_client(
        self,
        scraper_name: str,
        impersonate: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> EgressClient:
        key = f"{scraper_name}|{impersonate}"
        if key not in self._clients:
            self._clients[key] = EgressClient(
                scraper_name, self.provider, impersonate=impersonate, headers=headers
            )
        return self._clients[key]

    async def close_all(self):
        for client in self._clients.values():
            await client.close()


network_manager = NetworkManager()
