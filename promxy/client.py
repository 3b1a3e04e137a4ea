"""HTTP client for remote read and remote write endpoints."""

from __future__ import annotations

import http.client
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Mapping

from .prompb import Query, QueryResult, ReadRequest, ReadResponse, WriteRequest
from .snappy import SnappyError, compress, decompress

MAX_ERR_MSG_LEN = 256
USER_AGENT = "promxy-remote-storage"

_NETWORK_ERRORS = (OSError, http.client.HTTPException)


class RecoverableError(Exception):
    """A failure worth retrying: network errors and 5xx responses."""


@dataclass
class ClientConfig:
    """Where and how a Client talks to a remote endpoint."""

    url: str
    timeout: float = 30.0
    headers: Mapping[str, str] = field(default_factory=dict)
    insecure_skip_verify: bool = False


def _first_line(response) -> str:
    chunk = response.read(MAX_ERR_MSG_LEN) or b""
    line = chunk.split(b"\n", 1)[0]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode("utf-8", "replace")


class Client:
    """Reads from and writes to a remote storage endpoint over HTTP."""

    def __init__(self, index: int, config: ClientConfig) -> None:
        self.index = index
        self.url = config.url
        self.timeout = config.timeout
        self._headers = dict(config.headers)
        handlers = []
        if config.insecure_skip_verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            handlers.append(urllib.request.HTTPSHandler(context=context))
        self._opener = urllib.request.build_opener(*handlers)

    @property
    def name(self) -> str:
        """Identifies the client by its index and URL."""
        return f"{self.index}:{self.url}"

    def _request(self, payload: bytes, headers: Mapping[str, str]) -> urllib.request.Request:
        request = urllib.request.Request(self.url, data=payload, method="POST")
        for key, value in {**self._headers, **headers}.items():
            request.add_header(key, value)
        return request

    def _open(self, request: urllib.request.Request):
        kwargs = {"timeout": self.timeout} if self.timeout and self.timeout > 0 else {}
        try:
            return self._opener.open(request, **kwargs)
        except urllib.error.HTTPError as err:
            return err

    def store(self, request: WriteRequest) -> None:
        """Send a batch of samples; raises RecoverableError when a retry may help."""
        payload = compress(request.to_bytes())
        http_request = self._request(
            payload,
            {
                "Content-Encoding": "snappy",
                "Content-Type": "application/x-protobuf",
                "User-Agent": USER_AGENT,
                "X-Prometheus-Remote-Write-Version": "0.1.0",
            },
        )
        try:
            response = self._open(http_request)
        except _NETWORK_ERRORS as err:
            raise RecoverableError(str(err)) from err

        with response:
            status = response.getcode()
            if status // 100 == 2:
                return
            message = (
                f"server returned HTTP status {status} {response.reason}: "
                f"{_first_line(response)}"
            )
        if status // 100 == 5:
            raise RecoverableError(message)
        raise RuntimeError(message)

    def read(self, query: Query) -> QueryResult:
        """Run one query against the remote endpoint and return its result."""
        request = ReadRequest(queries=[query])
        payload = compress(request.to_bytes())
        try:
            http_request = self._request(
                payload,
                {
                    "Content-Encoding": "snappy",
                    "Accept-Encoding": "snappy",
                    "Content-Type": "application/x-protobuf",
                    "User-Agent": USER_AGENT,
                    "X-Prometheus-Remote-Read-Version": "0.1.0",
                },
            )
        except ValueError as err:
            raise ValueError(f"unable to create request: {err}") from err

        try:
            response = self._open(http_request)
        except _NETWORK_ERRORS as err:
            raise RuntimeError(f"error sending request: {err}") from err

        with response:
            status = response.getcode()
            if status // 100 != 2:
                raise RuntimeError(f"server returned HTTP status {status} {response.reason}")
            try:
                body = response.read()
            except _NETWORK_ERRORS as err:
                raise RuntimeError(f"error reading response: {err}") from err

        try:
            raw = decompress(body)
        except SnappyError as err:
            raise RuntimeError(f"error reading response: {err}") from err
        try:
            decoded = ReadResponse.from_bytes(raw)
        except ValueError as err:
            raise RuntimeError(f"unable to unmarshal response body: {err}") from err

        if len(decoded.results) != len(request.queries):
            raise RuntimeError(
                f"responses: want {len(request.queries)}, got {len(decoded.results)}"
            )
        return decoded.results[0]