"""Temporal client factory.

Connects to Temporal Cloud (API key or mTLS over TLS) or, when neither
credential is set and TEMPORAL_ALLOW_INSECURE is enabled, to a local dev
server. Environment is loaded through core.settings (which reads the repo
.env).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from temporalio.client import Client
from temporalio.service import TLSConfig

import core.settings  # noqa: F401  (loads .env)


@dataclass(frozen=True)
class TemporalConnection:
    """Connection parameters read from the environment.

    Attributes:
        endpoint: host:port of the frontend
        namespace: Temporal namespace
        api_key: Cloud API key (None for mTLS or a local server)
        cert_path: Client certificate for mTLS (optional)
        key_path: Client private key for mTLS (required with cert_path)
    """
    endpoint: str
    namespace: str = "default"
    api_key: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "TemporalConnection":
        """
        Read TEMPORAL_ENDPOINT, TEMPORAL_NAMESPACE, TEMPORAL_API_KEY,
        TEMPORAL_CERT_PATH, TEMPORAL_KEY_PATH and TEMPORAL_ALLOW_INSECURE.

        Raises:
            ValueError: If the endpoint is missing, or no credential is set
                on a secure connection
        """
        endpoint = os.getenv("TEMPORAL_ENDPOINT")
        if not endpoint:
            raise ValueError(
                "TEMPORAL_ENDPOINT environment variable not set. "
                "Set to your Temporal endpoint (e.g., 'temporal.example.com:7233')"
            )

        api_key = os.getenv("TEMPORAL_API_KEY") or None
        cert_path = os.getenv("TEMPORAL_CERT_PATH") or None
        key_path = os.getenv("TEMPORAL_KEY_PATH") or None
        allow_insecure = os.getenv("TEMPORAL_ALLOW_INSECURE", "").strip().lower() in ("1", "true", "yes")

        if cert_path and not key_path:
            raise ValueError("TEMPORAL_KEY_PATH must be set together with TEMPORAL_CERT_PATH")
        if not api_key and not cert_path and not allow_insecure:
            raise ValueError(
                "TEMPORAL_API_KEY environment variable not set. "
                "Set it (or TEMPORAL_CERT_PATH/TEMPORAL_KEY_PATH) for Temporal Cloud, "
                "or TEMPORAL_ALLOW_INSECURE=1 for a local server"
            )

        return cls(
            endpoint=endpoint,
            namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            api_key=api_key,
            cert_path=cert_path,
            key_path=key_path,
        )

    def tls(self) -> Union[bool, TLSConfig]:
        """TLS setting for Client.connect (False for a local server)."""
        if self.cert_path:
            return TLSConfig(
                client_cert=Path(self.cert_path).read_bytes(),
                client_private_key=Path(self.key_path).read_bytes(),
            )
        return bool(self.api_key)


async def get_temporal_client(connection: Optional[TemporalConnection] = None) -> Client:
    """Create and return a connected Temporal client.

    Args:
        connection: Explicit parameters; read from the environment when None

    Returns:
        Connected Temporal client
    """
    connection = connection or TemporalConnection.from_env()
    return await Client.connect(
        target_host=connection.endpoint,
        namespace=connection.namespace,
        tls=connection.tls(),
        api_key=connection.api_key,
    )
