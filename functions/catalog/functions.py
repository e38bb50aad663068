"""
Remote function invocation: HTTP client for the platform's edge functions
and an in-memory registry for tests/local runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import requests

from catalog.errors import NotFoundError, TransportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds

FunctionHandler = Callable[[dict], dict]


class FunctionClient(Protocol):
    def invoke(self, name: str, body: dict) -> dict:
        ...


def hello_world(body: dict) -> dict:
    """Local stand-in for the platform's starter `hello-world` function."""
    return {"message": f"Hello {body.get('name', 'World')}!"}


@dataclass
class InMemoryFunctionClient:
    """
    Dispatches invocations to registered Python handlers. Invocations are
    kept in `calls` only when `record_history` is set.
    """

    handlers: dict = field(default_factory=lambda: {"hello-world": hello_world})
    calls: list = field(default_factory=list)
    record_history: bool = False

    def register(self, name: str, handler: FunctionHandler) -> None:
        self.handlers[name] = handler

    def invoke(self, name: str, body: dict) -> dict:
        if self.record_history:
            self.calls.append((name, body))
        handler = self.handlers.get(name)
        if handler is None:
            raise NotFoundError(f"function {name} is not registered")
        return handler(body)


@dataclass
class HttpFunctionClient:
    """POSTs a JSON body to `<base_url>/<name>` and returns the JSON response."""

    base_url: str
    api_key: Optional[str] = None
    timeout: float = REQUEST_TIMEOUT

    def __post_init__(self):
        self.session = requests.Session()
        if self.api_key:
            self.session.headers.update(
                {
                    "Authorization": f"Bearer {self.api_key}",
                    "apikey": self.api_key,
                }
            )

    def invoke(self, name: str, body: dict) -> dict:
        url = f"{self.base_url.rstrip('/')}/{name}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            logger.exception("Error calling function %s", name)
            raise TransportError(f"function {name} failed") from exc
        except ValueError as exc:
            logger.exception("Function %s returned a non-JSON body", name)
            raise TransportError(f"function {name} returned invalid JSON") from exc
