import asyncio
import json
import logging
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from mcpanel.config import Settings
from mcpanel.errors import BackendError

logger = logging.getLogger(__name__)


CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"
DNS_TTL_SECONDS = 60


class DnsUpdater(Protocol):
    async def update(self, address: str) -> None:
        ...


class NullDns:
    """Used when no DNS provider is configured."""

    async def update(self, address: str) -> None:
        logger.info("DNS not configured, skipping update for %s", address)


class CloudflareDns:
    """Points the server's A record at a new address."""

    def __init__(self, zone_id: str, record_id: str, api_token: str, domain: str, timeout: float = 30):
        self.zone_id = zone_id
        self.record_id = record_id
        self.api_token = api_token
        self.domain = domain
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{CLOUDFLARE_API}/zones/{self.zone_id}/dns_records/{self.record_id}"

    def _put(self, address: str) -> None:
        payload = {
            "type": "A",
            "name": self.domain,
            "content": address,
            "ttl": DNS_TTL_SECONDS,
            "proxied": False,
        }
        request = Request(
            self.url,
            data=json.dumps(payload).encode(),
            method="PUT",
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urlopen(request, timeout=self.timeout) as resp:
                resp.read()
        except HTTPError as e:
            body = e.read().decode(errors="replace")
            logger.error("Cloudflare API error: %s %s", e.code, body)
            raise BackendError(
                "DnsUpdateFailed", f"Failed to update Cloudflare DNS record. Status: {e.code}",
            ) from e
        except URLError as e:
            raise BackendError("DnsUpdateFailed", f"Failed to reach Cloudflare: {e.reason}") from e

    async def update(self, address: str) -> None:
        logger.info("Updating Cloudflare DNS for %s to %s", self.domain, address)
        await asyncio.to_thread(self._put, address)
        logger.info("Updated Cloudflare DNS record")


def create_dns(settings: Settings) -> DnsUpdater:
    if settings.is_mock or not settings.dns_configured:
        return NullDns()
    return CloudflareDns(
        zone_id=settings.cloudflare_zone_id,
        record_id=settings.cloudflare_record_id,
        api_token=settings.cloudflare_api_token,
        domain=settings.cloudflare_domain,
    )
