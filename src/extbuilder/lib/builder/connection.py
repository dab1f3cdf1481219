"""Connection payload forwarded to a builder's run command."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

RUN_METADATA_FILENAME = "chaincode.json"
CLIENT_CERT_FILENAME = "client.crt"
CLIENT_KEY_FILENAME = "client.key"
ROOT_CERT_FILENAME = "root.crt"


@dataclass(frozen=True, slots=True)
class TLSConfig:
    """Raw PEM material the child uses to authenticate back to its peer."""

    client_cert: bytes = b""
    client_key: bytes = b""
    root_cert: bytes = b""


@dataclass(frozen=True, slots=True)
class PeerConnection:
    """Where the child should connect, and with which credentials."""

    address: str
    tls_config: TLSConfig | None = None


def _pem_text(raw: bytes) -> str:
    # JSON can only carry text. The cert files keep the exact bytes.
    return raw.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class RunMetadata:
    """Everything handed to ``bin/run``: the JSON document and the cert files."""

    chaincode_id: str
    peer_address: str
    mspid: str = ""
    tls: TLSConfig = field(default_factory=TLSConfig)

    @classmethod
    def from_connection(
        cls,
        *,
        package_id: str,
        msp_id: str,
        connection: PeerConnection,
    ) -> RunMetadata:
        return cls(
            chaincode_id=package_id,
            peer_address=connection.address,
            mspid=msp_id,
            tls=connection.tls_config or TLSConfig(),
        )

    def document(self) -> dict[str, str]:
        return {
            "chaincode_id": self.chaincode_id,
            "peer_address": self.peer_address,
            "client_cert": _pem_text(self.tls.client_cert),
            "client_key": _pem_text(self.tls.client_key),
            "root_cert": _pem_text(self.tls.root_cert),
            "mspid": self.mspid,
        }

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.document(), indent=2).encode("utf-8")

    def write(self, run_dir: Path) -> Path:
        """Write the metadata file and any cert material into ``run_dir``.

        Cert files receive the credential bytes unmodified.
        """

        run_dir.mkdir(parents=True, exist_ok=True)
        metadata_path = run_dir / RUN_METADATA_FILENAME
        metadata_path.write_bytes(self.to_json_bytes())

        for filename, content in (
            (CLIENT_CERT_FILENAME, self.tls.client_cert),
            (CLIENT_KEY_FILENAME, self.tls.client_key),
            (ROOT_CERT_FILENAME, self.tls.root_cert),
        ):
            if not content:
                continue
            path = run_dir / filename
            path.write_bytes(content)
            if filename == CLIENT_KEY_FILENAME:
                path.chmod(0o600)
        return metadata_path
