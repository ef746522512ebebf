"""Configuration for the resource client."""

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

DEFAULT_TIMEOUT = 30.0


@dataclass
class ClientConfig:
    """Where the REST backend lives and how long to wait for it."""

    base_url: str
    token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    api_prefix: str = "/api"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create configuration from environment variables."""
        base_url = os.environ.get("SCHOOLSYNC_API_URL")
        if not base_url:
            raise ValueError("SCHOOLSYNC_API_URL environment variable is required")

        timeout = os.environ.get("SCHOOLSYNC_TIMEOUT")
        return cls(
            base_url=base_url.rstrip("/"),
            token=os.environ.get("SCHOOLSYNC_API_TOKEN") or None,
            timeout=float(timeout) if timeout else DEFAULT_TIMEOUT,
        )

    def resource_path(self, resource: str, record_id: Optional[str] = None) -> str:
        """Path of a resource collection, or of one record in it.

        The record id is percent-encoded so ids containing ``/`` or ``?``
        still address that one record.
        """
        path = f"{self.api_prefix}/{resource.strip('/')}"
        if record_id is not None:
            path = f"{path}/{quote(str(record_id), safe='')}"
        return path
