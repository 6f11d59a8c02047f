from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

ADDRESS_VERSION = "lal"
TRANSACTION_VERSION = "la0l"


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class Role(str, Enum):
    FUNDER = "funder"
    PARTICIPANT = "participant"


@dataclass(frozen=True)
class WalletAddress:
    base: str
    key_identifier: str

    @property
    def address(self) -> str:
        return f"{self.base}{ADDRESS_VERSION}{self.key_identifier}"


@dataclass(frozen=True)
class Participant:
    """A node/wallet pair driven by the load test."""

    node_id: str
    node_signature: str
    host: str
    port: str
    wallet: WalletAddress
    role: Role = Role.PARTICIPANT

    @property
    def address(self) -> str:
        return self.wallet.address

    @property
    def key_identifier(self) -> str:
        return self.wallet.key_identifier


@dataclass(frozen=True)
class Balance:
    stable: int
    unstable: int

    @property
    def is_ready(self) -> bool:
        return self.unstable == 0 and self.stable > 0


@dataclass(frozen=True)
class UnspentOutput:
    transaction_id: str
    shard_id: str
    output_position: int
    address: str
    address_base: str
    address_key_identifier: str
    amount: int
    transaction_date: int = 0
    address_version: str = ADDRESS_VERSION

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UnspentOutput":
        return cls(
            transaction_id=str(data.get("transaction_id") or ""),
            shard_id=str(data.get("shard_id") or ""),
            output_position=_as_int(data.get("output_position")),
            address=str(data.get("address") or ""),
            address_base=str(data.get("address_base") or ""),
            address_key_identifier=str(data.get("address_key_identifier") or ""),
            amount=_as_int(data.get("amount")),
            transaction_date=_as_int(data.get("transaction_date")),
            address_version=str(data.get("address_version") or ADDRESS_VERSION),
        )


@dataclass(frozen=True)
class TransactionInput:
    output_transaction_id: str
    output_shard_id: str
    output_position: int
    address_base: str
    address_key_identifier: str
    output_transaction_date: int = 0
    address_version: str = ADDRESS_VERSION
    input_position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address_base": self.address_base,
            "address_key_identifier": self.address_key_identifier,
            "address_version": self.address_version,
            "output_position": int(self.output_position),
            "output_transaction_date": int(self.output_transaction_date),
            "output_transaction_id": self.output_transaction_id,
            "output_shard_id": self.output_shard_id,
            "input_position": int(self.input_position),
        }


@dataclass(frozen=True)
class TransactionOutput:
    address_base: str
    address_key_identifier: str
    amount: int
    address_version: str = ADDRESS_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "address_base": self.address_base,
            "address_version": self.address_version,
            "address_key_identifier": self.address_key_identifier,
            "amount": int(self.amount),
        }


@dataclass(frozen=True)
class UnsignedTransaction:
    inputs: tuple[TransactionInput, ...]
    outputs: tuple[TransactionOutput, ...]
    version: str = TRANSACTION_VERSION

    @property
    def output_total(self) -> int:
        return sum(o.amount for o in self.outputs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_version": self.version,
            "transaction_output_list": [o.to_dict() for o in self.outputs],
            "transaction_input_list": [i.to_dict() for i in self.inputs],
        }


@dataclass(frozen=True)
class SignedTransaction:
    """A node-signed transaction.

    The payload is opaque and is submitted back to the node as-is. Only the id and
    shard are read locally, to chain the next transaction onto its outputs.
    """

    transaction_id: str
    shard_id: str
    transaction_date: str = ""
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SignedTransaction":
        return cls(
            transaction_id=str(payload.get("transaction_id") or ""),
            shard_id=str(payload.get("shard_id") or ""),
            transaction_date=str(payload.get("transaction_date") or ""),
            payload=dict(payload),
        )

    def spendable_outputs(self, owner: WalletAddress, count: int) -> list[UnspentOutput]:
        """Unit outputs at positions 1..count (position 0 holds the change)."""
        return [
            UnspentOutput(
                transaction_id=self.transaction_id,
                shard_id=self.shard_id,
                output_position=position,
                address=owner.address,
                address_base=owner.key_identifier,
                address_key_identifier=owner.key_identifier,
                amount=1,
            )
            for position in range(1, count + 1)
        ]


@dataclass(frozen=True)
class ReceiverAmount:
    wallet: WalletAddress
    amount: int


@dataclass(frozen=True)
class AddressInfo:
    address: str
    address_base: str
    address_key_identifier: str
    public_key: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AddressInfo":
        attributes = data.get("address_attribute") or {}
        return cls(
            address=str(data.get("address") or ""),
            address_base=str(data.get("address_base") or ""),
            address_key_identifier=str(data.get("address_key_identifier") or ""),
            public_key=attributes.get("key_public") if isinstance(attributes, dict) else None,
        )


@dataclass(frozen=True)
class KeyMaterial:
    """Signing keys for one participant; held in memory for a single run."""

    private_keys: Mapping[str, str]
    public_keys: Mapping[str, str]


@dataclass(frozen=True)
class DispatchReport:
    success_count: int
    queued_count: int
    elapsed_seconds: float
    worker_count: int

    @property
    def tps(self) -> float:
        return (self.success_count / self.elapsed_seconds) if self.elapsed_seconds > 0 else 0.0


@dataclass(frozen=True)
class LoadResult:
    start_time: datetime
    end_time: datetime
    node_count: int
    total_transactions: int
    achieved_tps: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "total_transaction_count": int(self.total_transactions),
            "node_count": int(self.node_count),
            "achieved_tps": float(self.achieved_tps),
        }
