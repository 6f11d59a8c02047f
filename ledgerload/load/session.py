from __future__ import annotations

import logging
from typing import Mapping

from ledgerload.domain.models import KeyMaterial, Participant
from ledgerload.ports.node import NodeAPI

logger = logging.getLogger(__name__)


def fetch_key_material(node: NodeAPI, addresses: Mapping[str, str]) -> KeyMaterial:
    """Fetch keys for each `address -> key identifier` pair from the node."""
    private_keys: dict[str, str] = {}
    public_keys: dict[str, str] = {}
    for address, key_identifier in addresses.items():
        private_keys[key_identifier] = node.fetch_private_key(address)
        info = node.fetch_address_info(address)
        if info.public_key:
            public_keys[info.address_base] = info.public_key
        else:
            logger.warning("Node returned no public key for %s", address)
    return KeyMaterial(private_keys=private_keys, public_keys=public_keys)


def close_client(node: NodeAPI) -> None:
    # close() is not part of NodeAPI; HTTP clients have it, in-memory ones may not.
    close = getattr(node, "close", None)
    if callable(close):
        close()


class ParticipantSession:
    """A participant's node client plus the key material scoped to this run."""

    def __init__(self, participant: Participant, node: NodeAPI) -> None:
        self.participant = participant
        self.node = node
        self._key_material: KeyMaterial | None = None

    @property
    def address(self) -> str:
        return self.participant.address

    def obtain_key_material(self) -> KeyMaterial:
        # Each session is driven by one thread per phase, so the lazy fetch needs no lock.
        if self._key_material is None:
            self._key_material = fetch_key_material(
                self.node, {self.participant.address: self.participant.key_identifier}
            )
        return self._key_material

    def close(self) -> None:
        close_client(self.node)
