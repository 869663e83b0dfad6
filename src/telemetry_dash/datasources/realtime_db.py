"""
Realtime database client using the REST streaming protocol.

A subscription keeps one ``text/event-stream`` request open on a database
path. The server first sends a ``put`` with the whole tree at that path and
then ``put``/``patch`` events addressed by a sub-path. The client keeps a
local mirror of the tree and hands the complete collection to its callback
after every applied event, so consumers never deal with deltas.
"""

import asyncio
import contextlib
import copy
import json
import logging
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Callable, Optional

import httpx

from ..errors import ProcessingError, SourceConnectionError

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


def split_path(path: str) -> list[str]:
    """Split a database path into its segments ("/" is the root, [])."""
    return [part for part in path.split("/") if part]


def set_at_path(tree: Any, path: str, value: Any) -> Any:
    """
    Set ``value`` at ``path`` inside ``tree`` and return the new root.

    A None value deletes the node, and parents left empty are pruned the way
    the database does.
    """
    parts = split_path(path)
    if not parts:
        return copy.deepcopy(value)

    root = tree if isinstance(tree, dict) else {}
    node = root
    parents = []
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        parents.append((node, part))
        node = child

    if value is None:
        node.pop(parts[-1], None)
        # Prune parents that became empty
        for parent, part in reversed(parents):
            if parent[part]:
                break
            del parent[part]
    else:
        node[parts[-1]] = copy.deepcopy(value)

    return root or None


def apply_event(tree: Any, event: str, payload: Any) -> Any:
    """
    Apply one ``put`` or ``patch`` event to the mirrored tree.

    Raises:
        ProcessingError: If the payload has no path or a patch is not an object
    """
    if not isinstance(payload, dict) or "path" not in payload:
        raise ProcessingError(f"Malformed '{event}' event: {payload!r}")

    path = payload["path"]
    data = payload.get("data")
    if event == "put":
        return set_at_path(tree, path, data)

    if not isinstance(data, dict):
        raise ProcessingError(f"Patch data must be an object, got {type(data).__name__}")
    for key, value in data.items():
        tree = set_at_path(tree, f"{path.rstrip('/')}/{key}", value)
    return tree


async def iter_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group server-sent event lines into ``(event, data)`` pairs."""
    event = "message"
    data: list[str] = []
    async for line in lines:
        if not line:
            if data or event != "message":
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())
    if data:
        yield event, "\n".join(data)


class Subscription:
    """
    Handle for an open stream on a database path.

    The owner must call cancel() (or use ``async with``) to release it; after
    cancel() returns no callback fires anymore.
    """

    def __init__(self, path: str, task: "asyncio.Task[None]"):
        self.path = path
        self._task = task

    @property
    def active(self) -> bool:
        """Whether the stream is still running."""
        return not self._task.done()

    async def cancel(self) -> None:
        """Stop the stream and wait for it to finish."""
        if not self._task.done():
            self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        logger.debug(f"Subscription to '{self.path}' cancelled")

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cancel()


class RealtimeDatabaseClient:
    """Async client for a realtime database's REST interface."""

    def __init__(
        self,
        url: str,
        auth: str = "",
        timeout: float = 30.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            url: Database URL (e.g., https://my-project.firebaseio.com)
            auth: Optional secret or ID token sent as the ``auth`` parameter
            timeout: Connect timeout in seconds. Streams have no read timeout,
                the server sends keep-alive events instead.
            http: HTTP client to use (one is created when omitted)
        """
        self.url = url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None

    def _ensure_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, read=None),
                follow_redirects=True,
            )
        return self._http

    def _endpoint(self, path: str) -> str:
        return f"{self.url}/{'/'.join(split_path(path))}.json"

    def _params(self) -> dict[str, str]:
        return {"auth": self.auth} if self.auth else {}

    async def get(self, path: str) -> Any:
        """Read the value at ``path`` once."""
        http = self._ensure_http()
        try:
            response = await http.get(
                self._endpoint(path), params=self._params(), timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceConnectionError(f"Realtime database request failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise ProcessingError(f"Realtime database returned invalid JSON: {e}") from e

    def subscribe(
        self,
        path: str,
        on_value: ValueCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """
        Open a stream on ``path``.

        Args:
            path: Database path of the collection
            on_value: Awaited with the whole collection after every update
            on_error: Awaited once if the stream fails; the stream then ends

        Returns:
            Subscription handle owning the stream task
        """
        task = asyncio.create_task(
            self._run(path, on_value, on_error), name=f"rtdb-stream:{path}"
        )
        logger.info(f"Subscribed to realtime database path '{path}'")
        return Subscription(path, task)

    async def _run(self, path: str, on_value: ValueCallback, on_error: ErrorCallback) -> None:
        http = self._ensure_http()
        try:
            async with http.stream(
                "GET",
                self._endpoint(path),
                params=self._params(),
                headers={"Accept": "text/event-stream"},
            ) as response:
                response.raise_for_status()
                await self.consume(response.aiter_lines(), on_value)
            raise SourceConnectionError(f"Stream on '{path}' closed by the server")
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            logger.error(f"Realtime database stream on '{path}' failed: {e}")
            await on_error(SourceConnectionError(f"Realtime database stream failed: {e}"))
        except (SourceConnectionError, ProcessingError) as e:
            logger.error(f"Realtime database stream on '{path}' ended: {e}")
            await on_error(e)

    async def consume(self, lines: AsyncIterator[str], on_value: ValueCallback) -> None:
        """
        Apply the events read from ``lines`` and report the mirrored collection.

        Returns when the lines run out.

        Raises:
            SourceConnectionError: On ``cancel`` or ``auth_revoked`` events
            ProcessingError: On undecodable event data
        """
        tree: Any = None
        async for event, data in iter_events(lines):
            if event == "keep-alive":
                continue
            if event in ("cancel", "auth_revoked"):
                raise SourceConnectionError(f"Stream terminated by server ({event})")
            if event not in ("put", "patch"):
                logger.debug(f"Ignoring stream event '{event}'")
                continue

            try:
                payload = json.loads(data)
            except ValueError as e:
                raise ProcessingError(f"Invalid JSON in '{event}' event: {e}") from e

            tree = apply_event(tree, event, payload)
            await on_value(copy.deepcopy(tree))

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
