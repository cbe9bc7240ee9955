from __future__ import annotations

from typing import Dict, Optional

import requests

from lifecycled.utils.diagnostics import MetadataError, MetadataNotFoundError

DEFAULT_ENDPOINT = "http://169.254.169.254/latest"
TOKEN_TTL_SECONDS = 21600


class InstanceMetadata:
    """Client for the EC2 instance metadata service.

    Uses IMDSv2 session tokens when the token endpoint answers and falls back
    to token-less (IMDSv1) requests otherwise.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def available(self) -> bool:
        """Return True when the metadata service answers an instance-id lookup."""
        try:
            self.get("instance-id")
        except MetadataError:
            return False
        return True

    def get(self, key: str) -> str:
        """Return the value stored under ``meta-data/<key>``.

        Raises MetadataNotFoundError when the key does not exist and
        MetadataError on any other failure.
        """
        url = f"{self.endpoint}/meta-data/{key.lstrip('/')}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise MetadataError(f"Failed to query metadata key '{key}': {exc}") from exc

        if response.status_code == 404:
            raise MetadataNotFoundError(key)
        if response.status_code != 200:
            raise MetadataError(
                f"Got a {response.status_code} response from metadata service for '{key}'"
            )
        return response.text

    def instance_id(self) -> str:
        return self.get("instance-id").strip()

    def region(self) -> str:
        """Derive the region from the availability zone (us-east-1a -> us-east-1)."""
        zone = self.get("placement/availability-zone").strip()
        if len(zone) < 2:
            raise MetadataError(f"Unexpected availability zone '{zone}'")
        return zone[:-1]

    def _headers(self) -> Dict[str, str]:
        token = self._token()
        if token is None:
            return {}
        return {"X-aws-ec2-metadata-token": token}

    def _token(self) -> Optional[str]:
        try:
            response = self.session.put(
                f"{self.endpoint}/api/token",
                headers={"X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)},
                timeout=self.timeout,
            )
        except requests.RequestException:
            return None

        if response.status_code != 200 or not response.text:
            return None
        return response.text
