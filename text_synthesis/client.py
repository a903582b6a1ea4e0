"""
Speech synthesis client for the Google Cloud Text-to-Speech REST API.

The queue only depends on the ``SynthesisClient`` protocol; any object with
a ``synthesize(request)`` method that returns a ``SynthesisResult`` or raises
``SynthesisError`` can be used instead.
"""

import base64
import binascii
import threading
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Protocol

import requests

from .jobs.errors import ConfigurationError, TransientAPIError
from .jobs.models import SynthesisRequest

DEFAULT_ENDPOINT = "https://texttospeech.googleapis.com/v1beta1/"


@dataclass
class SynthesisResult:
    """Audio returned by a successful synthesis call."""
    audio_content: bytes
    audio_encoding: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # timepoints, audioConfig echo, ...


class SynthesisClient(Protocol):
    """Anything that can turn a request into audio."""

    def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        ...


class GoogleSynthesisClient:
    """
    Calls ``{endpoint}text:synthesize?key={api_key}``.

    One ``requests.Session`` is kept per thread, so a single client can be
    shared by all workers of a batch.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: str = "",
        timeout: float = 60.0
    ):
        """
        Args:
            endpoint: API base URL
            api_key: API key sent as the ``key`` query parameter
            timeout: Seconds before a call is abandoned and treated as failed
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if not hasattr(self._local, 'session'):
            session = requests.Session()
            session.headers.update({"Content-Type": "application/json; charset=utf-8"})
            self._local.session = session
        return self._local.session

    def _url(self) -> str:
        if not self.endpoint or not self.endpoint.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid synthesis API endpoint: '{self.endpoint}'")
        if not self.api_key:
            raise ConfigurationError("No API key configured for the synthesis API")

        base = self.endpoint if self.endpoint.endswith("/") else self.endpoint + "/"
        return base + "text:synthesize"

    def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        """
        Synthesize one request.

        Raises:
            ConfigurationError: Endpoint or API key missing or invalid
            TransientAPIError: Network failure, non-2xx response or unusable body
        """
        url = self._url()

        try:
            r = self.session.post(
                url,
                params={"key": self.api_key},
                json=request.to_dict(),
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise TransientAPIError(f"Synthesis request timed out after {self.timeout:g}s") from e
        except requests.RequestException as e:
            raise TransientAPIError(f"Synthesis request failed: {e}") from e

        if not r.ok:
            raise TransientAPIError(_error_message(r), status_code=r.status_code)

        try:
            body = r.json()
            audio = base64.b64decode(body["audioContent"], validate=True)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise TransientAPIError(f"Unexpected synthesis response: {e}") from e

        encoding = (body.get("audioConfig") or {}).get("audioEncoding")
        if encoding is None and request.audio_config is not None:
            encoding = request.audio_config.audio_encoding

        extra = {k: v for k, v in body.items() if k != "audioContent"}
        return SynthesisResult(audio_content=audio, audio_encoding=encoding, extra=extra)

    def close(self):
        if hasattr(self._local, 'session'):
            self._local.session.close()
            del self._local.session


def _error_message(response: requests.Response) -> str:
    """Use the API's own error message when the body carries one."""
    try:
        message = response.json()["error"]["message"]
        if message:
            return message
    except (ValueError, KeyError, TypeError):
        pass
    return f"HTTP {response.status_code}: {response.reason}"
