"""
Signing capability. Holds the key material; nothing else in the searcher does.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from app.searcher.exceptions import SigningError


class Signer(ABC):
    """Opaque signer: transactions for bundles, messages for relay auth."""

    address: str

    @abstractmethod
    def sign_transaction(self, request: Dict[str, Any]) -> str:
        """Return the signed raw transaction as 0x-prefixed hex."""

    @abstractmethod
    def sign_message(self, message: bytes) -> str:
        """Return an EIP-191 personal signature over message as 0x-prefixed hex."""


class LocalSigner(Signer):
    """Signer backed by an in-process eth-account key."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except Exception as ex:
            # The key itself must never end up in the message.
            raise SigningError(f"Invalid private key: {type(ex).__name__}") from None
        self.address = self._account.address

    def sign_transaction(self, request: Dict[str, Any]) -> str:
        try:
            signed = self._account.sign_transaction(request)
        except Exception as ex:
            raise SigningError(f"Failed to sign transaction: {ex}") from ex
        return Web3.to_hex(signed.raw_transaction)

    def sign_message(self, message: bytes) -> str:
        try:
            signed = self._account.sign_message(encode_defunct(primitive=message))
        except Exception as ex:
            raise SigningError(f"Failed to sign message: {ex}") from ex
        return Web3.to_hex(signed.signature)


def recover_message_signer(message: bytes, signature: str) -> str:
    """Address that produced signature over message."""
    return Account.recover_message(encode_defunct(primitive=message), signature=signature)
