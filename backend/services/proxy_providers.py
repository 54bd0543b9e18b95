"""
Sources of proxy endpoints for the session pool.

- StaticProxyProvider: endpoints from PROXY_LIST
- HttpProxyProvider: endpoints from a proxy vendor API (bearer key)
- DirectConnectionProvider: no proxy, only used when nothing is configured
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)


class ProxyProviderError(Exception):
    """Proxy vendor API returned something unusable"""
    pass


@dataclass(frozen=True)
class ProxyEndpoint:
    """A network egress point. server is None for a direct connection."""
    server: Optional[str]
    username: Optional[str] = None
    password: Optional[str] = None
    residential: bool = True
    provider: str = "config"
    country_code: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.server or 'direct'}|{self.username or ''}"

    def playwright_proxy(self) -> Optional[dict]:
        """Proxy settings in the shape Browser.new_context(proxy=...) expects."""
        if not self.server:
            return None
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
            proxy["password"] = self.password or ""
        return proxy


def parse_proxy_entry(entry: str, provider: str = "config") -> ProxyEndpoint:
    """
    Parse one PROXY_LIST entry.

    Format: [scheme://][user:pass@]host:port[#residential|#datacenter]
    Entries default to residential unless tagged #datacenter.
    """
    entry = entry.strip()
    residential = True
    if "#" in entry:
        entry, tag = entry.rsplit("#", 1)
        residential = tag.strip().lower() != "datacenter"
    if "://" not in entry:
        entry = f"http://{entry}"

    parts = urlsplit(entry)
    if not parts.hostname or not parts.port:
        raise ValueError(f"Invalid proxy entry: {entry!r}")

    return ProxyEndpoint(
        server=f"{parts.scheme}://{parts.hostname}:{parts.port}",
        username=parts.username,
        password=parts.password,
        residential=residential,
        provider=provider,
    )


class ProxyProvider:
    name = "base"

    async def get_endpoints(self) -> List[ProxyEndpoint]:
        raise NotImplementedError


class StaticProxyProvider(ProxyProvider):
    name = "config"

    def __init__(self, endpoints: List[ProxyEndpoint]):
        self.endpoints = list(endpoints)

    @classmethod
    def from_string(cls, proxy_list: str) -> "StaticProxyProvider":
        endpoints = []
        for entry in proxy_list.split(","):
            if not entry.strip():
                continue
            try:
                endpoints.append(parse_proxy_entry(entry))
            except ValueError as e:
                logger.warning(f"Skipping proxy entry: {e}")
        return cls(endpoints)

    async def get_endpoints(self) -> List[ProxyEndpoint]:
        return list(self.endpoints)


class HttpProxyProvider(ProxyProvider):
    """
    Pulls the endpoint list from a proxy vendor.

    Expected response: {"proxies": [{"host" or "ip", "port", "username",
    "password", "protocol", "type", "country"}]}
    """

    name = "api"

    def __init__(self, api_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.transport = transport

    async def get_endpoints(self) -> List[ProxyEndpoint]:
        async with httpx.AsyncClient(timeout=30.0, transport=self.transport) as client:
            response = await client.get(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"}
            )

        if response.status_code != 200:
            raise ProxyProviderError(f"Proxy API error {response.status_code}: {response.text[:200]}")

        data = response.json()
        if not isinstance(data, dict) or not isinstance(data.get("proxies"), list):
            raise ProxyProviderError("Unexpected proxy API response format")

        endpoints = []
        for item in data["proxies"]:
            host = item.get("ip") or item.get("host")
            port = item.get("port")
            if not host or not port:
                continue
            protocol = item.get("protocol") or "http"
            endpoints.append(ProxyEndpoint(
                server=f"{protocol}://{host}:{int(port)}",
                username=item.get("username"),
                password=item.get("password"),
                residential=(item.get("type") or "residential").lower() == "residential",
                provider=self.name,
                country_code=item.get("country"),
            ))

        logger.info(f"Loaded {len(endpoints)} proxies from provider API")
        return endpoints


class DirectConnectionProvider(ProxyProvider):
    """Direct connection slots, one per concurrent worker."""

    name = "direct"

    def __init__(self, slots: int = 1):
        self.slots = slots

    async def get_endpoints(self) -> List[ProxyEndpoint]:
        return [
            ProxyEndpoint(server=None, username=f"direct-{i}", provider=self.name)
            for i in range(self.slots)
        ]


class CompositeProxyProvider(ProxyProvider):
    """Merges several providers; a failing provider is logged and skipped."""

    name = "mixed"

    def __init__(self, providers: List[ProxyProvider]):
        self.providers = providers

    async def get_endpoints(self) -> List[ProxyEndpoint]:
        endpoints = []
        for provider in self.providers:
            try:
                endpoints.extend(await provider.get_endpoints())
            except Exception as e:
                logger.error(f"Proxy provider '{provider.name}' failed: {e}")
        return endpoints


def build_proxy_provider(slots: int = 1) -> ProxyProvider:
    """Provider from PROXY_LIST / PROXY_API_URL / PROXY_API_KEY."""
    providers: List[ProxyProvider] = []

    proxy_list = os.getenv("PROXY_LIST", "")
    if proxy_list.strip():
        providers.append(StaticProxyProvider.from_string(proxy_list))

    api_url = os.getenv("PROXY_API_URL")
    api_key = os.getenv("PROXY_API_KEY")
    if api_url and api_key:
        providers.append(HttpProxyProvider(api_url, api_key))

    if not providers:
        logger.warning("No proxies configured - scraping over a direct connection")
        return DirectConnectionProvider(slots=slots)
    if len(providers) == 1:
        return providers[0]
    return CompositeProxyProvider(providers)
