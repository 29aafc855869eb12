"""
Firebase Realtime Database Client Module

Handles configuration, error handling, retries and live subscriptions for
the Firebase Realtime Database REST API.

REST Documentation: https://firebase.google.com/docs/reference/rest/database
Every path maps to ``{database_url}/{path}.json``. Live subscriptions use
the streaming endpoint (``Accept: text/event-stream``), which sends a full
``put`` at the root first and then ``put``/``patch`` events for each change.
"""

import copy
import json
import os
import threading
import time
import requests
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Tuple
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FirebaseError(Exception):
    """Raised when a database call fails"""
    pass


class ConfigError(ValueError):
    """Raised when required connection settings are missing"""
    pass


class StreamUnavailable(FirebaseError):
    """Raised when a stream is refused with a status worth reconnecting after"""
    pass


# =============================================================================
# STREAM EVENT HANDLING
# =============================================================================

def _split_path(path: str) -> list:
    return [part for part in (path or "").split("/") if part]


def _set_child(tree: Any, parts: list, value: Any) -> Any:
    """Set (or delete when value is None) a nested child, returning the new root."""
    if not parts:
        return value

    # Arrays come back as JSON lists but children are addressed by index
    if isinstance(tree, list):
        tree = {str(i): v for i, v in enumerate(tree) if v is not None}

    if not isinstance(tree, dict):
        if value is None:
            return tree
        tree = {}

    head, rest = parts[0], parts[1:]
    child = _set_child(tree.get(head), rest, value)
    if child is None or child == {}:
        tree.pop(head, None)
    else:
        tree[head] = child

    return tree or None


def apply_stream_event(tree: Any, path: str, data: Any, patch: bool = False) -> Any:
    """
    Apply one streaming event to a local copy of the value at the stream root.

    Args:
        tree: Current value (None when nothing has arrived yet)
        path: Event path relative to the stream root ('/' for the root)
        data: Event data. None deletes the node.
        patch: True for 'patch' events, which merge the children of ``data``

    Returns:
        The new value. The input tree is never mutated.
    """
    updated = copy.deepcopy(tree)
    parts = _split_path(path)

    if patch and isinstance(data, dict):
        for key, value in data.items():
            updated = _set_child(updated, parts + _split_path(key), copy.deepcopy(value))
        return updated

    return _set_child(updated, parts, copy.deepcopy(data))


def iter_sse_events(lines: Iterable[str]) -> Iterator[Tuple[str, str]]:
    """
    Parse Server-Sent Events from an iterable of text lines.

    Yields:
        (event_name, data) tuples, one per blank-line-terminated event
    """
    event_name = None
    data_lines = []

    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r")

        if not line:
            if event_name is not None or data_lines:
                yield event_name or "message", "\n".join(data_lines)
            event_name = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event_name = value
        elif field == "data":
            data_lines.append(value)

    if event_name is not None or data_lines:
        yield event_name or "message", "\n".join(data_lines)


# =============================================================================
# CONTEXT
# =============================================================================

class FirebaseContext:
    """
    Connection handle for one Firebase Realtime Database.

    Built explicitly by the caller and passed to whatever needs database
    access. Settings come from the environment using the naming convention
    FIREBASE_DATABASE_URL, FIREBASE_AUTH_TOKEN, FIREBASE_TIMEOUT.
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 2  # seconds to wait before retrying
    STREAM_READ_TIMEOUT = 90  # server sends keep-alive every 30 seconds
    STREAM_RECONNECT_DELAY = 5
    STREAM_TERMINAL_STATUSES = (401, 403)

    def __init__(
        self,
        database_url: Optional[str],
        auth_token: Optional[str] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the database context.

        Args:
            database_url: Root URL (e.g. https://my-app.firebaseio.com)
            auth_token: Database secret or ID token sent as the ``auth`` param
            timeout: Request timeout in seconds
            session: Optional pre-built requests session
        """
        if not database_url:
            raise ConfigError(
                "Missing database URL. Please set FIREBASE_DATABASE_URL in .env file"
            )

        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json"
        })

        self._subscriptions = []
        self._subscriptions_lock = threading.Lock()
        logger.info(f"Initialized database context for: {self.database_url}")

    @classmethod
    def from_env(cls, prefix: str = "FIREBASE_", session: Optional[requests.Session] = None) -> "FirebaseContext":
        """
        Build a context from environment variables (loads .env first).

        Raises:
            ConfigError: If {prefix}DATABASE_URL is not set
        """
        load_dotenv()

        database_url = os.getenv(f"{prefix}DATABASE_URL")
        if not database_url:
            raise ConfigError(
                f"Missing database URL. Please set {prefix}DATABASE_URL in .env file"
            )

        timeout_raw = os.getenv(f"{prefix}TIMEOUT")
        try:
            timeout = float(timeout_raw) if timeout_raw else 30
        except ValueError:
            raise ConfigError(f"{prefix}TIMEOUT must be a number of seconds, got '{timeout_raw}'")

        return cls(
            database_url,
            auth_token=os.getenv(f"{prefix}AUTH_TOKEN") or None,
            timeout=timeout,
            session=session
        )

    def _url(self, path: str) -> str:
        clean = "/".join(_split_path(path))
        return f"{self.database_url}/{clean}.json"

    def _params(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = dict(extra or {})
        if self.auth_token:
            params["auth"] = self.auth_token
        return params

    def _make_request(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        params: Optional[Dict[str, Any]] = None,
        retry_count: int = 0
    ) -> Any:
        """
        Make a REST request with error handling and retries.

        Args:
            path: Database path (e.g. 'yardstock/acme-rv')
            method: HTTP method (GET, PUT, PATCH, POST, DELETE)
            payload: JSON body for writes
            params: Extra query parameters
            retry_count: Current retry attempt number

        Returns:
            Decoded JSON response (None for empty nodes)

        Raises:
            FirebaseError: For non-recoverable errors or when retries run out
        """
        url = self._url(path)
        body = json.dumps(payload) if payload is not None or method in ("PUT", "POST") else None

        try:
            logger.debug(f"Making {method} request to {path}")
            response = self.session.request(
                method,
                url,
                params=self._params(params),
                data=body,
                timeout=self.timeout
            )

            if response.status_code in (200, 204):
                if not response.content:
                    return None
                return response.json()

            elif response.status_code == 400:
                raise FirebaseError(f"Bad Request (400) for {path}: {response.text}")

            elif response.status_code in (401, 403):
                raise FirebaseError(
                    f"Permission denied ({response.status_code}) for {path}: "
                    f"check FIREBASE_AUTH_TOKEN and database rules. {response.text}"
                )

            elif response.status_code == 404:
                raise FirebaseError(f"Resource Not Found (404): {path}")

            elif response.status_code in (429, 500, 503):
                if retry_count < self.MAX_RETRIES:
                    logger.warning(
                        f"Server returned {response.status_code} for {path}. "
                        f"Retry {retry_count + 1}/{self.MAX_RETRIES} in {self.RETRY_DELAY} seconds..."
                    )
                    time.sleep(self.RETRY_DELAY)
                    return self._make_request(path, method, payload, params, retry_count + 1)
                raise FirebaseError(
                    f"Server error ({response.status_code}) - max retries reached: {response.text}"
                )

            else:
                raise FirebaseError(
                    f"Unexpected status code {response.status_code} for {path}: {response.text}"
                )

        except requests.exceptions.RequestException as e:
            if retry_count < self.MAX_RETRIES:
                logger.warning(f"Request to {path} failed: {e}. Retrying...")
                time.sleep(self.RETRY_DELAY)
                return self._make_request(path, method, payload, params, retry_count + 1)
            raise FirebaseError(f"Request failed after {self.MAX_RETRIES} retries: {e}")

    # =========================================================================
    # READS & WRITES
    # =========================================================================

    def get(self, path: str) -> Any:
        """Read the value at a path (None when the node does not exist)."""
        return self._make_request(path, "GET")

    def set(self, path: str, value: Any) -> Any:
        """Replace the value at a path."""
        return self._make_request(path, "PUT", value)

    def update(self, path: str, values: Dict[str, Any]) -> Any:
        """Merge children into the node at a path."""
        return self._make_request(path, "PATCH", values)

    def remove(self, path: str) -> None:
        self._make_request(path, "DELETE")

    def push(self, path: str, value: Any) -> str:
        """
        Append a child with a generated key.

        Returns:
            The generated child key
        """
        result = self._make_request(path, "POST", value) or {}
        key = result.get("name") if isinstance(result, dict) else None
        if not key:
            raise FirebaseError(f"Push to {path} returned no key: {result}")
        return key

    # =========================================================================
    # STREAMING
    # =========================================================================

    def open_stream(self, path: str) -> requests.Response:
        """
        Open a streaming response for a path.

        Raises:
            FirebaseError: If the server refuses the stream for lack of access
            StreamUnavailable: For any other refusal (busy, rate limited, ...)
        """
        response = self.session.get(
            self._url(path),
            params=self._params(),
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self.timeout, self.STREAM_READ_TIMEOUT)
        )
        if response.status_code != 200:
            text = response.text
            response.close()
            message = f"Stream for {path} refused ({response.status_code}): {text}"
            if response.status_code in self.STREAM_TERMINAL_STATUSES:
                raise FirebaseError(message)
            raise StreamUnavailable(message)
        return response

    def subscribe(
        self,
        path: str,
        callback: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None
    ) -> "Subscription":
        """
        Deliver the current value at a path and every later change.

        Args:
            path: Database path to watch
            callback: Called with the full current value after every change
            on_error: Called with the exception when the stream fails

        Returns:
            A started Subscription. Call ``unsubscribe()`` (or the
            subscription itself) to stop it.
        """
        subscription = Subscription(self, path, callback, on_error)
        with self._subscriptions_lock:
            self._subscriptions.append(subscription)
        subscription.start()
        return subscription

    def discard(self, subscription: "Subscription"):
        """Forget a subscription that has stopped."""
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def close(self):
        """Stop every subscription opened through this context."""
        with self._subscriptions_lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()
        self.session.close()


class Subscription:
    """
    A live listener on one database path, run in a daemon thread.

    Once ``unsubscribe()`` returns, the callback is never invoked again,
    even for an event that was already in flight.
    """

    def __init__(
        self,
        context: FirebaseContext,
        path: str,
        callback: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        self.context = context
        self.path = path
        self.callback = callback
        self.on_error = on_error

        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._active = True
        self._response = None
        self._tree = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"firebase-stream:{path}",
            daemon=True
        )

    @property
    def active(self) -> bool:
        return self._active

    def start(self):
        logger.info(f"Subscribing to {self.path}")
        self._thread.start()

    def unsubscribe(self):
        """Stop the listener. Safe to call more than once."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._tree = None
        self._stop.set()
        self.context.discard(self)

        response = self._response
        if response is not None:
            response.close()
        logger.info(f"Unsubscribed from {self.path}")

    __call__ = unsubscribe

    def _deliver(self, value: Any):
        with self._lock:
            if not self._active:
                return
            try:
                self.callback(value)
            except Exception as e:
                logger.exception(f"Subscription callback for {self.path} failed")
                self._report(e)

    def _report(self, error: Exception):
        if self.on_error and self._active:
            self.on_error(error)

    def handle_event(self, event: str, data: str):
        """Apply one SSE event to the local value and notify the callback."""
        if event in ("put", "patch"):
            try:
                message = json.loads(data)
            except ValueError:
                logger.warning(f"Dropping malformed {event} event on {self.path}: {data[:200]}")
                return
            if not isinstance(message, dict):
                logger.warning(f"Dropping unexpected {event} payload on {self.path}")
                return
            with self._lock:
                if not self._active:
                    return
                self._tree = apply_stream_event(
                    self._tree,
                    message.get("path", "/"),
                    message.get("data"),
                    patch=(event == "patch")
                )
                self._deliver(self._tree)

        elif event == "keep-alive":
            return

        elif event in ("cancel", "auth_revoked"):
            logger.error(f"Stream for {self.path} closed by server: {event} {data}")
            self._report(FirebaseError(f"Stream for {self.path} closed by server: {event}"))
            self._stop.set()

        else:
            logger.debug(f"Ignoring {event} event on {self.path}")

    def _run(self):
        while not self._stop.is_set():
            try:
                self._response = self.context.open_stream(self.path)
                for event, data in iter_sse_events(self._response.iter_lines(decode_unicode=True)):
                    if self._stop.is_set():
                        break
                    self.handle_event(event, data)

            except StreamUnavailable as e:
                if self._stop.is_set():
                    break
                logger.warning(f"{e}. Reconnecting in {self.context.STREAM_RECONNECT_DELAY} seconds...")
                self._report(e)
                self._stop.wait(self.context.STREAM_RECONNECT_DELAY)

            except FirebaseError as e:
                logger.error(f"Subscription to {self.path} failed: {e}")
                self._report(e)
                break

            except requests.exceptions.RequestException as e:
                if self._stop.is_set():
                    break
                logger.warning(
                    f"Stream for {self.path} dropped: {e}. "
                    f"Reconnecting in {self.context.STREAM_RECONNECT_DELAY} seconds..."
                )
                self._report(FirebaseError(f"Stream for {self.path} dropped: {e}"))
                self._stop.wait(self.context.STREAM_RECONNECT_DELAY)

            finally:
                if self._response is not None:
                    self._response.close()
                    self._response = None

        with self._lock:
            self._tree = None
        self.context.discard(self)
        logger.debug(f"Stream thread for {self.path} exiting")
