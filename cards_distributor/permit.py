"""
Query permits for Poker Cards Distributor.

A permit is an Amino-signed document proving that the holder of an address
may read its own private data from a set of contracts. The document is
signed with zero fee, zero account number and zero sequence so it can
never be replayed as a transaction that moves funds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional, Protocol

from cards_distributor.errors import PermitError
from cards_distributor.settings import Settings

DEFAULT_PERMIT_NAME = "query_cards"
DEFAULT_PERMISSIONS = ("allowance",)
FEE_DENOM = "uscrt"
PERMIT_MSG_TYPE = "query_permit"


class Signer(Protocol):
    """Wallet side of the signing interface (key material stays there)."""

    address: str

    async def sign_amino(self, signer_address: str, sign_doc: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class Permit:
    permit_name: str
    allowed_targets: FrozenSet[str]
    permissions: FrozenSet[str]
    chain_id: str
    signer_address: str
    signature: Dict[str, Any]

    def covers(self, target: str) -> bool:
        return target in self.allowed_targets

    def to_query_dict(self) -> Dict[str, Any]:
        """Wire form expected by the contract's with_permit query."""
        return {
            "params": {
                "permit_name": self.permit_name,
                "allowed_tokens": sorted(self.allowed_targets),
                "chain_id": self.chain_id,
                "permissions": sorted(self.permissions),
            },
            "signature": dict(self.signature),
        }


class PermitBuilder:
    """Builds permits for one signer."""

    def __init__(self, signer: Signer, chain_id: str,
                 permit_name: str = DEFAULT_PERMIT_NAME,
                 permissions: Iterable[str] = DEFAULT_PERMISSIONS):
        self.signer = signer
        self.chain_id = chain_id
        self.permit_name = permit_name
        self.permissions = frozenset(permissions)

    @classmethod
    def from_settings(cls, signer: Signer, settings: Settings) -> "PermitBuilder":
        return cls(signer, settings.chain_id, permit_name=settings.permit_name)

    def build_sign_doc(self, allowed_targets: Iterable[str],
                       permissions: Optional[Iterable[str]] = None,
                       fee_amount: int = 0, gas: int = 1,
                       account_number: int = 0, sequence: int = 0,
                       memo: str = "") -> Dict[str, Any]:
        """Assemble the canonical document that gets signed.

        Everything that could turn the signature into a spendable transaction
        is pinned: a non-zero fee, account number or sequence, a gas other
        than 1 or a memo is refused before anything reaches the signer.
        """
        if fee_amount != 0:
            raise PermitError(f"Permit fee must be 0 {FEE_DENOM}, got {fee_amount}")
        if account_number != 0 or sequence != 0:
            raise PermitError("Permit account_number and sequence must be 0")
        if gas != 1:
            raise PermitError(f"Permit gas must be 1, got {gas}")
        if memo:
            raise PermitError("Permit memo must be empty")

        targets = sorted(set(allowed_targets))
        if not targets:
            raise PermitError("Permit needs at least one allowed target")
        perms = sorted(set(permissions) if permissions is not None else self.permissions)
        if not perms:
            raise PermitError("Permit needs at least one permission")

        return {
            "chain_id": self.chain_id,
            "account_number": "0",
            "sequence": "0",
            "fee": {
                "amount": [{"denom": FEE_DENOM, "amount": "0"}],
                "gas": "1",
            },
            "msgs": [{
                "type": PERMIT_MSG_TYPE,
                "value": {
                    "permit_name": self.permit_name,
                    "allowed_tokens": targets,
                    "permissions": perms,
                },
            }],
            "memo": "",
        }

    async def build(self, allowed_targets: Iterable[str],
                    permissions: Optional[Iterable[str]] = None) -> Permit:
        """Sign a permit for the given targets and package it."""
        targets = frozenset(allowed_targets)
        sign_doc = self.build_sign_doc(targets, permissions)
        signer_address = self.signer.address

        try:
            signature = await self.signer.sign_amino(signer_address, sign_doc)
        except Exception as e:
            logging.error(f"Signing permit '{self.permit_name}' for {signer_address} failed: {e}")
            raise PermitError(f"Signer failed: {e}") from e

        if not isinstance(signature, dict) or "pub_key" not in signature or "signature" not in signature:
            raise PermitError("Signer returned a malformed signature")

        value = sign_doc["msgs"][0]["value"]
        logging.debug(f"Built permit '{self.permit_name}' for {signer_address} on {len(targets)} target(s)")
        return Permit(
            permit_name=self.permit_name,
            allowed_targets=frozenset(value["allowed_tokens"]),
            permissions=frozenset(value["permissions"]),
            chain_id=self.chain_id,
            signer_address=signer_address,
            signature=signature,
        )
