"""
Capability Probe
================
One-shot background discovery of the Canvas version and feature set.
"""

import asyncio
import threading
from typing import Awaitable, Callable, Optional

import httpx
import structlog

from .models import META_HEADER, CapabilityDescriptor, parse_meta_header

logger = structlog.get_logger(__name__)

DISCOVERY_PATH = "/api/v1/accounts"
DEFAULT_PROBE_TIMEOUT = 10.0


class CapabilityProbe:
    """
    Runs a discovery request at most once and publishes what it learns.

    Feature checks never wait for the probe: until it has published, the
    version is unknown and every feature reads as unsupported.

    Example:
        probe = CapabilityProbe(lambda: http.get("/api/v1/accounts"))
        probe.trigger()           # starts the background task
        probe.supports_feature("graphql")  # False until published
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[httpx.Response]],
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        self._fetch = fetch
        self.timeout = timeout
        self._descriptor: Optional[CapabilityDescriptor] = None
        self._task: Optional[asyncio.Task] = None
        self._started = False
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def descriptor(self) -> Optional[CapabilityDescriptor]:
        """The published descriptor, or None if not yet discovered."""
        return self._descriptor

    def get_version(self) -> Optional[str]:
        descriptor = self._descriptor
        return descriptor.version if descriptor is not None else None

    def supports_feature(self, feature: str) -> bool:
        descriptor = self._descriptor
        return descriptor is not None and descriptor.supports(feature)

    def publish(self, descriptor: CapabilityDescriptor) -> None:
        """Replace the descriptor and mark the probe as done."""
        with self._lock:
            self._started = True
            self._descriptor = descriptor

    def trigger(self) -> bool:
        """
        Start the probe in the background if it has never been started.

        Must be called from a running event loop. Returns True only for the
        call that actually launched the probe.
        """
        with self._lock:
            if self._started:
                return False
            self._started = True
            self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def wait(self) -> Optional[CapabilityDescriptor]:
        """Wait for a launched probe to finish; returns the descriptor."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)
        return self._descriptor

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        logger.debug("capability_probe_started", path=DISCOVERY_PATH)
        try:
            response = await asyncio.wait_for(self._fetch(), self.timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("capability_probe_failed", error=str(e) or type(e).__name__)
            return

        meta = parse_meta_header(response.headers.get(META_HEADER))
        if not meta and not response.is_success:
            logger.warning(
                "capability_probe_failed",
                error=f"HTTP {response.status_code}",
                status=response.status_code,
            )
            return

        descriptor = CapabilityDescriptor.from_meta(meta)
        self._descriptor = descriptor

        logger.info(
            "capability_probe_completed",
            version=descriptor.version,
            features=sorted(descriptor.features),
            status=response.status_code,
        )
