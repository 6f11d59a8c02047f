from __future__ import annotations

import logging
from typing import Any, Mapping

import requests
import urllib3
from urllib3.exceptions import InsecureRequestWarning

from ledgerload.domain.errors import IdentityMismatch, NodeTransportError, SigningError, SubmissionError
from ledgerload.domain.models import (
    AddressInfo,
    Balance,
    Participant,
    SignedTransaction,
    UnsignedTransaction,
    UnspentOutput,
)

logger = logging.getLogger(__name__)

# Node API endpoint identifiers.
ENDPOINT_NODE_ID = "ZFAYRM8LRtmfYp4Y"
ENDPOINT_UNSPENT_OUTPUTS = "FDLyQ5uo5t7jltiQ"
ENDPOINT_PRIVATE_KEY = "PKUv2JfV87KpEZwE"
ENDPOINT_SIGN = "RVBqKlGdk9aEhi5J"
ENDPOINT_SUBMIT = "VnJIBrrM0KY3uQ9X"
ENDPOINT_ADDRESS_INFO = "ywTmt3C0nwk5k4c7"
ENDPOINT_BALANCE = "zLsiAkocn90e3K6R"
ENDPOINT_NEW_ADDRESS = "Lb2fuhVMDQm1DrLL"

# Upper bound on outputs returned by a single unspent-output query.
UNSPENT_OUTPUT_PAGE_SIZE = 10_000_000


class NodeClient:
    """
    HTTP client for a single ledger node.

    Nodes serve self-signed certificates, so TLS verification is off unless
    enabled in config. requests.Session is not shared across threads: dispatch
    workers each build their own client.
    """

    def __init__(
        self,
        participant: Participant,
        *,
        verify_tls: bool = False,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.participant = participant
        self.verify_tls = bool(verify_tls)
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.verify = self.verify_tls
        if not self.verify_tls:
            urllib3.disable_warnings(InsecureRequestWarning)

    @property
    def base_url(self) -> str:
        p = self.participant
        return f"https://{p.host}:{p.port}/api/{p.node_id}/{p.node_signature}"

    def close(self) -> None:
        self._session.close()

    # ----- NodeAPI -----

    def verify_identity(self) -> None:
        data = self._get(ENDPOINT_NODE_ID)
        node_id = data.get("node_id") if isinstance(data, dict) else None
        if node_id != self.participant.node_id:
            raise IdentityMismatch(
                f"Invalid node id at {self.participant.host}:{self.participant.port}: "
                f"expected {self.participant.node_id}, got {node_id}"
            )

    def get_balance(self, address: str) -> Balance:
        data = self._get(ENDPOINT_BALANCE, {"p0": address})
        if not isinstance(data, dict):
            raise NodeTransportError(f"Unexpected balance response: {data!r}")
        return Balance(stable=int(data.get("stable") or 0), unstable=int(data.get("unstable") or 0))

    def list_unspent_outputs(self, key_identifier: str) -> list[UnspentOutput]:
        data = self._get(
            ENDPOINT_UNSPENT_OUTPUTS,
            {"p3": key_identifier, "p7": "1", "p10": "0", "p14": str(UNSPENT_OUTPUT_PAGE_SIZE)},
        )
        if not isinstance(data, list):
            raise NodeTransportError(f"Unexpected unspent outputs response: {data!r}")
        return [UnspentOutput.from_dict(row) for row in data]

    def fetch_private_key(self, address: str) -> str:
        data = self._get(ENDPOINT_PRIVATE_KEY, {"p0": address})
        if not isinstance(data, dict) or not data.get("private_key_hex"):
            raise NodeTransportError(f"No private key returned for {address}")
        return str(data["private_key_hex"])

    def fetch_address_info(self, address: str) -> AddressInfo:
        data = self._get(ENDPOINT_ADDRESS_INFO, {"p0": address})
        if not isinstance(data, dict):
            raise NodeTransportError(f"Unexpected address info response: {data!r}")
        return AddressInfo.from_dict(data)

    def sign_transaction(
        self,
        unsigned: UnsignedTransaction,
        private_keys: Mapping[str, str],
        public_keys: Mapping[str, str],
    ) -> SignedTransaction:
        body = {"p0": unsigned.to_dict(), "p1": dict(private_keys), "p2": dict(public_keys)}
        data = self._post(ENDPOINT_SIGN, body)
        if not isinstance(data, dict):
            raise NodeTransportError(f"Unexpected sign response: {data!r}")
        if not data.get("transaction_id"):
            status = data.get("status")
            if status == "fail":
                raise SigningError("Status fail")
            raise SigningError(f"Node returned no transaction id (status: {status})")
        return SignedTransaction.from_payload(data)

    def submit_transaction(self, signed: SignedTransaction) -> None:
        data = self._post(ENDPOINT_SUBMIT, {"p0": signed.payload})
        status = data.get("status") if isinstance(data, dict) else None
        if status != "success":
            raise SubmissionError(f"Got status: {status}")

    def generate_new_address(self) -> AddressInfo:
        data = self._get(ENDPOINT_NEW_ADDRESS)
        if not isinstance(data, dict):
            raise NodeTransportError(f"Unexpected new address response: {data!r}")
        return AddressInfo.from_dict(data)

    # -------------------
    # Internal
    # -------------------

    def _get(self, endpoint: str, params: dict[str, str] | None = None) -> Any:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, body: dict[str, Any]) -> Any:
        return self._request("POST", endpoint, json=body)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{endpoint}"
        try:
            resp = self._session.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except requests.RequestException as e:
            raise NodeTransportError(f"{method} {endpoint} on {self.participant.host} failed: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise NodeTransportError(
                f"{method} {endpoint} on {self.participant.host} returned unreadable body "
                f"(HTTP {resp.status_code}): {resp.text[:200]}"
            ) from e
