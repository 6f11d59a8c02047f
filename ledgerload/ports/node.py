from __future__ import annotations

from typing import Mapping, Protocol

from ledgerload.domain.models import AddressInfo, Balance, SignedTransaction, UnsignedTransaction, UnspentOutput


class NodeAPI(Protocol):
    def verify_identity(self) -> None: ...

    def get_balance(self, address: str) -> Balance: ...

    def list_unspent_outputs(self, key_identifier: str) -> list[UnspentOutput]: ...

    def fetch_private_key(self, address: str) -> str: ...

    def fetch_address_info(self, address: str) -> AddressInfo: ...

    def sign_transaction(
        self,
        unsigned: UnsignedTransaction,
        private_keys: Mapping[str, str],
        public_keys: Mapping[str, str],
    ) -> SignedTransaction: ...

    def submit_transaction(self, signed: SignedTransaction) -> None: ...

    def generate_new_address(self) -> AddressInfo: ...
