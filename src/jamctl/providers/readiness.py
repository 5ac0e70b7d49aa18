"""Readiness polling for the node's RPC control endpoint."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import httpx

from ..errors import ReadinessTimeout

LOGGER = logging.getLogger(__name__)

_PROBE_PAYLOAD = {"jsonrpc": "2.0", "id": 1, "method": "parameters", "params": []}
_SCHEME_MAP = {"ws": "http", "wss": "https", "http": "http", "https": "https"}


@dataclass(frozen=True, slots=True)
class ReadinessResult:
    """Outcome of a readiness poll."""

    endpoint: str
    ready: bool
    attempts: int
    elapsed: float
    last_error: str | None = None
    aborted: bool = False


def probe_url(endpoint: str) -> str:
    """Translate a ``ws://`` or ``wss://`` endpoint into its HTTP equivalent."""
    parts = urlsplit(endpoint)
    scheme = _SCHEME_MAP.get(parts.scheme.lower())
    if scheme is None or not parts.netloc:
        raise ValueError(f"Unsupported RPC endpoint: {endpoint!r}")
    return urlunsplit((scheme, parts.netloc, parts.path or "/", parts.query, ""))


class ReadinessProber:
    """Poll an endpoint on a fixed interval until it answers or time runs out."""

    def __init__(
        self,
        *,
        probe_timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Configure the per-attempt timeout and injectable time sources."""
        self.probe_timeout = probe_timeout
        self._transport = transport
        self._clock = clock
        self._sleep = sleep

    def await_ready(
        self,
        endpoint: str,
        *,
        timeout: float,
        interval: float = 0.5,
        abort_if: Callable[[], bool] | None = None,
    ) -> ReadinessResult:
        """Poll *endpoint* until it responds, *timeout* elapses, or *abort_if* fires."""
        url = probe_url(endpoint)
        started = self._clock()
        deadline = started + timeout
        attempts = 0
        last_error: str | None = None

        with httpx.Client(transport=self._transport, trust_env=False) as client:
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                attempts += 1
                last_error = self._probe_once(client, url, min(self.probe_timeout, remaining))
                if last_error is None:
                    return ReadinessResult(
                        endpoint=endpoint,
                        ready=True,
                        attempts=attempts,
                        elapsed=self._clock() - started,
                    )
                if abort_if is not None and abort_if():
                    return ReadinessResult(
                        endpoint=endpoint,
                        ready=False,
                        attempts=attempts,
                        elapsed=self._clock() - started,
                        last_error=last_error,
                        aborted=True,
                    )
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                self._sleep(min(interval, remaining))

        LOGGER.debug("Endpoint %s not ready after %d attempts: %s", endpoint, attempts, last_error)
        return ReadinessResult(
            endpoint=endpoint,
            ready=False,
            attempts=attempts,
            elapsed=self._clock() - started,
            last_error=last_error,
        )

    def require_ready(
        self,
        endpoint: str,
        *,
        timeout: float,
        interval: float = 0.5,
    ) -> ReadinessResult:
        """Like :meth:`await_ready` but raise :class:`ReadinessTimeout` on failure."""
        result = self.await_ready(endpoint, timeout=timeout, interval=interval)
        if not result.ready:
            raise ReadinessTimeout(endpoint, timeout, result.last_error)
        return result

    def _probe_once(self, client: httpx.Client, url: str, timeout: float) -> str | None:
        """Return ``None`` when the endpoint answered, otherwise the failure reason.

        Only the response headers are awaited; the body is never read. httpx
        applies timeouts per phase, so connect and read each get half of
        *timeout* to keep the attempt within budget.
        """
        phase = httpx.Timeout(timeout / 2)
        try:
            with client.stream("POST", url, json=_PROBE_PAYLOAD, timeout=phase):
                pass
        except httpx.HTTPError as exc:
            return f"{exc.__class__.__name__}: {exc}" if str(exc) else exc.__class__.__name__
        return None


__all__ = ["ReadinessProber", "ReadinessResult", "probe_url"]
