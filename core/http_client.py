# core/http_client.py
import aiohttp
import asyncio
import logging
from typing import Optional
from core.config import config

log = logging.getLogger("calbot.http")


class HTTPClientManager:
    """Manages the shared HTTP client session with connection pooling"""

    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self.is_closed = False

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session with connection pooling"""
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    await self._create_session()

        return self._session

    async def _create_session(self):
        connector = aiohttp.TCPConnector(
            limit=config.max_connections,
            limit_per_host=config.max_connections_per_host,
            ttl_dns_cache=300,
            keepalive_timeout=30,
        )

        timeout = aiohttp.ClientTimeout(
            total=config.http_timeout,
            connect=config.http_timeout // 3,
            sock_read=config.http_timeout // 2,
        )

        headers = {
            'User-Agent': 'CalendarReminderBot/1.0 (Discord Bot; iCalendar Reader)',
            'Accept': 'text/calendar, application/xml, text/xml, */*',
            'Accept-Encoding': 'gzip, deflate',
        }

        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers=headers,
            raise_for_status=False,  # Status codes are handled by the callers
        )

        self.is_closed = False
        log.info(f"Created HTTP session with {config.max_connections} max connections "
                 f"({config.max_connections_per_host} per host)")

    async def close(self):
        """Close HTTP session and cleanup connections"""
        if self._session and not self._session.closed:
            async with self._lock:
                if self._session and not self._session.closed:
                    await self._session.close()
                    self.is_closed = True
                    log.info("HTTP session closed")

# Global HTTP client manager
http_client = HTTPClientManager()


async def close_http_client():
    """Close global HTTP client"""
    await http_client.close()
