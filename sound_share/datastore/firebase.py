"""
Firebase Realtime Database backend (REST + streaming).

Mapping of datastore operations onto the REST API:

    get(path)             GET    {url}/{path}.json
    set(path, value)      PUT    {url}/{path}.json     (DELETE when value is None)
    update(path, values)  PATCH  {url}/{path}.json
    push(path, value)     POST   {url}/{path}.json     -> {"name": "<push id>"}
    remove(path)          DELETE {url}/{path}.json
    query_by_key(...)     GET    ...?orderBy="$key"&startAt="a"&endAt="a\\uf8ff"
    subscribe(path)       GET    with Accept: text/event-stream

Every request carries the database secret or a user ID token in the
"auth" query parameter when one is configured.

Streaming:
    Each active iteration of a Subscription owns one background thread
    holding a streaming GET. The server sends "put" and "patch" events
    relative to the subscribed path, "keep-alive" every 30 seconds,
    and "cancel" / "auth_revoked" when the rules or the credential stop
    allowing the read. put/patch events are applied to a local copy of
    the subtree and the full value is delivered as a Snapshot. Dropped
    connections are re-opened after a short delay; the server then sends
    the full value again, which is only delivered if it changed.
"""

import json
import threading
import urllib.parse
from typing import Any, Callable, Iterable, Iterator

import requests

from sound_share.core.exceptions import DatastoreError
from sound_share.core.logger import get_logger
from sound_share.datastore.base import (
    Listener,
    Snapshot,
    Subscription,
    normalize_value,
    split_path,
)
from sound_share.datastore.memory import MemoryDatastore


logger = get_logger(__name__)


# Firebase sends keep-alive every 30 s; anything longer than this is a dead socket
STREAM_READ_TIMEOUT = 90.0

_NOTHING_DELIVERED = object()


def iter_sse_events(lines: Iterable[str | None]) -> Iterator[tuple[str, str]]:
    """
    Parse a text/event-stream into (event, data) pairs.

    Args:
        lines: Decoded lines without terminators; "" marks the end of an event.
    """
    event: str | None = None
    data_lines: list[str] = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if event is not None or data_lines:
                yield event or "message", "\n".join(data_lines)
            event = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)


class _EventStream(threading.Thread):
    """Background reader for one streaming GET."""

    def __init__(
        self,
        store: "FirebaseDatastore",
        parts: list[str],
        deliver: Listener
    ) -> None:
        super().__init__(daemon=True, name=f"firebase-stream:{'/'.join(parts) or '/'}")
        self._store = store
        self._parts = parts
        self._path = "/".join(parts)
        self._deliver = deliver
        self._stopped = threading.Event()
        self._response: requests.Response | None = None
        self._cache = MemoryDatastore()
        self._last: Any = _NOTHING_DELIVERED

    def stop(self) -> None:
        self._stopped.set()
        response = self._response
        if response is not None:
            response.close()

    def _publish(self) -> None:
        value = self._cache.get("").value
        if value != self._last:
            self._last = value
            self._deliver(Snapshot(self._path, value))

    def _handle(self, event: str, data: str) -> bool:
        """Apply one event. Returns False when the stream must end."""
        if event == "keep-alive":
            return True
        if event in ("put", "patch"):
            payload = json.loads(data)
            if not isinstance(payload, dict) or (
                event == "patch" and not isinstance(payload.get("data") or {}, dict)
            ):
                self._deliver(DatastoreError(
                    f"Malformed '{event}' event on the subscription to '{self._path}'",
                    details={"path": self._path, "event": event, "data": data}
                ))
                return False
            relative = payload.get("path", "/")
            if event == "put":
                self._cache.set(relative, payload.get("data"))
            else:
                self._cache.update(relative, payload.get("data") or {})
            self._publish()
            return True
        if event == "cancel":
            self._deliver(DatastoreError(
                f"Datastore stopped the subscription to '{self._path}' (permission denied)",
                details={"path": self._path, "event": event}
            ))
            return False
        if event == "auth_revoked":
            self._deliver(DatastoreError(
                "Datastore credential expired or was revoked",
                details={"path": self._path, "event": event}
            ))
            return False
        logger.debug(f"Ignoring unknown stream event '{event}'")
        return True

    def run(self) -> None:
        while not self._stopped.is_set():
            try:
                with self._store._http.get(
                    self._store._url(self._parts),
                    params=self._store._params(),
                    headers={"Accept": "text/event-stream"},
                    stream=True,
                    timeout=(self._store.request_timeout, STREAM_READ_TIMEOUT),
                ) as response:
                    self._response = response
                    if response.status_code >= 400:
                        self._deliver(self._store._error_for(response, "subscribe", self._path))
                        return
                    for event, data in iter_sse_events(response.iter_lines(decode_unicode=True)):
                        if self._stopped.is_set() or not self._handle(event, data):
                            return
            except (requests.RequestException, OSError, ValueError) as e:
                if self._stopped.is_set():
                    return
                logger.warning(f"Datastore stream for '{self._path}' dropped ({e}), reconnecting")
            finally:
                self._response = None
            self._stopped.wait(self._store.reconnect_delay)


class FirebaseDatastore:
    """
    Datastore client for a Firebase Realtime Database.

    Attributes:
        url: Database URL without trailing slash
             (https://<project>-default-rtdb.firebaseio.com).
        request_timeout: Seconds before a REST request gives up.
        reconnect_delay: Seconds to wait before re-opening a dropped stream.
    """

    def __init__(
        self,
        url: str,
        auth: str | None = None,
        http: requests.Session | None = None,
        request_timeout: float = 10.0,
        reconnect_delay: float = 1.0
    ) -> None:
        self.url = url.rstrip("/")
        self._auth = auth
        self._http = http or requests.Session()
        self.request_timeout = request_timeout
        self.reconnect_delay = reconnect_delay
        self._streams: set[_EventStream] = set()
        self._lock = threading.Lock()
        self._closed = False

    # =========================================================================
    # REST plumbing
    # =========================================================================

    def _url(self, parts: list[str]) -> str:
        encoded = "/".join(urllib.parse.quote(part, safe="") for part in parts)
        return f"{self.url}/{encoded}.json"

    def _params(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        params = dict(extra or {})
        if self._auth:
            params["auth"] = self._auth
        return params

    def _error_for(self, response: requests.Response, operation: str, path: str) -> DatastoreError:
        try:
            body = response.json()
            reason = body.get("error") if isinstance(body, dict) else None
        except ValueError:
            reason = None
        reason = reason or response.text[:200] or f"HTTP {response.status_code}"
        if response.status_code in (401, 403):
            message = f"Permission denied for {operation} on '{path}': {reason}"
        else:
            message = f"Datastore {operation} on '{path}' failed: {reason}"
        return DatastoreError(
            message,
            details={"path": path, "operation": operation, "http_status": response.status_code}
        )

    def _request(
        self,
        method: str,
        parts: list[str],
        operation: str,
        params: dict[str, str] | None = None,
        body: Any = None
    ) -> Any:
        if self._closed:
            raise DatastoreError("Datastore is closed")
        path = "/".join(parts)
        try:
            response = self._http.request(
                method,
                self._url(parts),
                params=self._params(params),
                data=json.dumps(body) if body is not None else None,
                timeout=self.request_timeout,
            )
        except requests.RequestException as e:
            raise DatastoreError(
                f"Network error during {operation} on '{path}': {e}",
                details={"path": path, "operation": operation, "original_error": str(e)}
            ) from e

        if response.status_code >= 400:
            raise self._error_for(response, operation, path)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DatastoreError(
                f"Invalid JSON from datastore during {operation} on '{path}'",
                details={"path": path, "operation": operation}
            ) from e

    # =========================================================================
    # Datastore operations
    # =========================================================================

    def get(self, path: str) -> Snapshot:
        parts = split_path(path)
        value = self._request("GET", parts, "get")
        return Snapshot("/".join(parts), normalize_value(value))

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        normalized = normalize_value(value)
        if normalized is None:
            self._request("DELETE", parts, "remove")
        else:
            self._request("PUT", parts, "set", params={"print": "silent"}, body=normalized)

    def update(self, path: str, values: dict[str, Any]) -> None:
        parts = split_path(path)
        body = {
            "/".join(split_path(key)): normalize_value(value)
            for key, value in values.items()
        }
        # PATCH treats null as delete; json.dumps keeps the None entries
        self._request("PATCH", parts, "update", params={"print": "silent"}, body=body)

    def push(self, path: str, value: Any) -> str:
        parts = split_path(path)
        normalized = normalize_value(value)
        if normalized is None:
            raise DatastoreError("Cannot push an empty value", details={"path": "/".join(parts)})
        result = self._request("POST", parts, "push", body=normalized)
        if not isinstance(result, dict) or "name" not in result:
            raise DatastoreError(
                "Datastore push returned no key",
                details={"path": "/".join(parts), "response": result}
            )
        return result["name"]

    def remove(self, path: str) -> None:
        self._request("DELETE", split_path(path), "remove")

    def query_by_key(
        self,
        path: str,
        start_at: str | None = None,
        end_at: str | None = None,
        limit: int | None = None
    ) -> Snapshot:
        parts = split_path(path)
        # Query parameters are JSON values, so strings keep their quotes
        params = {"orderBy": json.dumps("$key")}
        if start_at is not None:
            params["startAt"] = json.dumps(start_at)
        if end_at is not None:
            params["endAt"] = json.dumps(end_at)
        if limit is not None:
            params["limitToFirst"] = str(limit)
        value = self._request("GET", parts, "query", params=params)
        if isinstance(value, dict):
            value = {key: value[key] for key in sorted(value)}
        return Snapshot("/".join(parts), normalize_value(value))

    def subscribe(self, path: str) -> Subscription:
        parts = split_path(path)
        if self._closed:
            raise DatastoreError("Datastore is closed")
        return Subscription("/".join(parts), self._attach(parts))

    def _attach(self, parts: list[str]) -> Callable[[Listener], Callable[[], None]]:
        def attach(deliver: Listener) -> Callable[[], None]:
            stream = _EventStream(self, parts, deliver)
            with self._lock:
                if self._closed:
                    raise DatastoreError("Datastore is closed")
                self._streams.add(stream)
            stream.start()

            def detach() -> None:
                stream.stop()
                with self._lock:
                    self._streams.discard(stream)
            return detach
        return attach

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()

    def close(self) -> None:
        """Stop every stream. Active subscriptions end with a DatastoreError."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            streams = list(self._streams)
            self._streams.clear()
        for stream in streams:
            stream._deliver(DatastoreError("Datastore was closed"))
            stream.stop()
        self._http.close()
