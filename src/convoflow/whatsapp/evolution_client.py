"""Evolution API client for side-channel fetches (media, profile pictures).

Security: NEVER log phone numbers or message keys. Only instance and sizes.
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import mask_tail, safe_log_context

logger = get_logger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0


class EvolutionConfigError(RuntimeError):
    """EVOLUTION_BASE_URL / EVOLUTION_API_KEY missing."""

    pass


class ProviderError(Exception):
    """Evolution API call failed (network, timeout, non-2xx, bad body)."""

    pass


@dataclass(frozen=True)
class MediaPayload:
    """Decoded media returned by getBase64FromMediaMessage."""

    content: bytes
    mime_type: str | None


class EvolutionClient:
    """Thin requests wrapper around the Evolution REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "apikey": self.api_key,
        }
        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise ProviderError(f"{path}: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderError(f"{path}: response is not JSON") from e

        if not isinstance(body, dict):
            raise ProviderError(f"{path}: unexpected response shape")
        return body

    def fetch_media_base64(self, instance_name: str, message_key: Mapping[str, Any]) -> MediaPayload:
        """Download media bytes for a message.

        Raises:
            ProviderError: On transport failure or empty/invalid base64.
        """
        body = self._post(
            f"/chat/getBase64FromMediaMessage/{instance_name}",
            {"message": {"key": dict(message_key)}, "convertToMp4": False},
        )
        encoded = body.get("base64") or body.get("data")
        if not encoded or not isinstance(encoded, str):
            raise ProviderError("media response carried no base64")

        # Some versions return a data URI
        if encoded.startswith("data:") and "," in encoded:
            encoded = encoded.split(",", 1)[1]
        try:
            content = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ProviderError("media base64 could not be decoded") from e

        mime_type = body.get("mimetype") or body.get("mimeType")
        logger.info(
            "media fetched",
            extra={"extra_fields": safe_log_context(instance=instance_name, size_bytes=len(content))},
        )
        return MediaPayload(content=content, mime_type=mime_type if isinstance(mime_type, str) else None)

    def fetch_profile_picture(self, instance_name: str, phone: str) -> str | None:
        """Return the provider's profile picture URL for a phone, or None.

        Raises:
            ProviderError: On transport failure.
        """
        body = self._post(
            f"/chat/fetchProfilePictureUrl/{instance_name}",
            {"number": phone},
        )
        url = body.get("profilePictureUrl") or body.get("url") or body.get("picture")
        if not url or not isinstance(url, str):
            logger.info(
                "no profile picture",
                extra={"extra_fields": {"instance": instance_name, "phone": mask_tail(phone)}},
            )
            return None
        return url

    def download(self, url: str) -> tuple[bytes, str | None]:
        """GET a public URL (e.g. a profile picture) and return body + content type.

        Raises:
            ProviderError: On transport failure or non-2xx.
        """
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProviderError(f"download failed: {type(e).__name__}") from e
        return response.content, response.headers.get("Content-Type")


def client_from_env() -> EvolutionClient | None:
    """Build a client from EVOLUTION_* env vars, or None when not configured.

    Env vars:
    - EVOLUTION_BASE_URL: Base URL (e.g., http://localhost:8080)
    - EVOLUTION_API_KEY: API token
    - EVOLUTION_HTTP_TIMEOUT: Seconds per request (default 10)
    """
    base_url = os.environ.get("EVOLUTION_BASE_URL", "")
    api_key = os.environ.get("EVOLUTION_API_KEY", "")
    if not base_url or not api_key:
        return None
    timeout = float(os.environ.get("EVOLUTION_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
    return EvolutionClient(base_url, api_key, timeout=timeout)
