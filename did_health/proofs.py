"""
Proof strategies for Verifiable Credentials
============================================

The credential factory and verifier only know these two seams:

- Signer.sign(canonical_payload, issuer_did) -> signatureValue
- SignatureChecker.check(canonical_payload, proof, issuer_did) -> bool

PlaceholderSigner / PlaceholderSignatureChecker keep the demo behaviour
(shape-based, no cryptography). KeyPairSigner / KeyPairSignatureChecker sign
with the issuer's registered key and verify against the public key published
in its DID Document.
"""

import re
import hashlib
import secrets
import logging
from typing import Optional, Dict, Any, Callable, Protocol

from .errors import NotFound
from .key_manager import (
    KeyPair,
    ED25519_KEY_TYPE,
    SECP256K1_KEY_TYPE,
    sign_ed25519,
    sign_secp256k1,
    verify_ed25519,
    verify_secp256k1,
)
from .did_manager import DIDDocument

logger = logging.getLogger(__name__)

PLACEHOLDER_PROOF_TYPE = "PlaceholderSignature2024"

PROOF_TYPES = {
    ED25519_KEY_TYPE: "Ed25519Signature2020",
    SECP256K1_KEY_TYPE: "EcdsaSecp256k1Signature2019",
}

_PLACEHOLDER_SIGNATURE = re.compile(r"^mock:[0-9a-f]{16}:[0-9a-f]{64}$")


class Signer(Protocol):
    def proof_type(self, issuer_did: str) -> str:
        ...

    def sign(self, canonical_payload: bytes, issuer_did: str) -> str:
        ...


class SignatureChecker(Protocol):
    def check(self, canonical_payload: bytes, proof: Dict[str, Any], issuer_did: str) -> bool:
        ...


def payload_digest(canonical_payload: bytes) -> str:
    return hashlib.sha256(canonical_payload).hexdigest()


def verification_method_for(issuer_did: str) -> str:
    return f"{issuer_did}#key-1"


# ==================== PLACEHOLDER ====================

class PlaceholderSigner:
    """Demo signer: a nonce plus the payload digest. Proves nothing."""

    def proof_type(self, issuer_did: str) -> str:
        return PLACEHOLDER_PROOF_TYPE

    def sign(self, canonical_payload: bytes, issuer_did: str) -> str:
        return f"mock:{secrets.token_hex(8)}:{payload_digest(canonical_payload)}"


class PlaceholderSignatureChecker:
    """Accepts any signatureValue of the placeholder shape issued for the issuer's key"""

    def check(self, canonical_payload: bytes, proof: Dict[str, Any], issuer_did: str) -> bool:
        if proof.get("verificationMethod") != verification_method_for(issuer_did):
            return False
        value = proof.get("signatureValue")
        return isinstance(value, str) and bool(_PLACEHOLDER_SIGNATURE.match(value))


# ==================== KEY PAIR ====================

class KeyPairSigner:
    """
    Signs with the issuer's registered key pair

    Uses Ed25519 or secp256k1 depending on the key type. The message signed
    is the SHA-256 hex digest of the canonical payload.
    """

    def __init__(self, key_lookup: Callable[[str], Optional[KeyPair]]):
        self._key_lookup = key_lookup

    def _key(self, issuer_did: str) -> KeyPair:
        key = self._key_lookup(issuer_did)
        if key is None or not key.private_key:
            raise NotFound(f"Signing key not found for {issuer_did}")
        return key

    def proof_type(self, issuer_did: str) -> str:
        key_type = self._key(issuer_did).key_type
        if key_type not in PROOF_TYPES:
            raise ValueError(f"Key type cannot sign: {key_type}")
        return PROOF_TYPES[key_type]

    def sign(self, canonical_payload: bytes, issuer_did: str) -> str:
        key = self._key(issuer_did)
        digest = payload_digest(canonical_payload)

        if key.key_type == ED25519_KEY_TYPE:
            return sign_ed25519(key.private_key, digest.encode())
        if key.key_type == SECP256K1_KEY_TYPE:
            return sign_secp256k1(key.private_key, digest)
        raise ValueError(f"Key type cannot sign: {key.key_type}")


class KeyPairSignatureChecker:
    """Verifies signatures against the issuer's DID Document"""

    def __init__(self, resolver: Callable[[str], Optional[DIDDocument]]):
        self._resolver = resolver

    def check(self, canonical_payload: bytes, proof: Dict[str, Any], issuer_did: str) -> bool:
        method_id = proof.get("verificationMethod")
        signature = proof.get("signatureValue")
        if not isinstance(method_id, str) or not isinstance(signature, str):
            return False

        document = self._resolver(issuer_did)
        if document is None:
            logger.info("Could not resolve issuer DID %s", issuer_did)
            return False

        method = document.find_verification_method(method_id)
        if method is None:
            return False

        public_key = method.get("publicKeyMultibase", "")
        if public_key.startswith("z"):
            public_key = public_key[1:]
        digest = payload_digest(canonical_payload)

        if method.get("type") == ED25519_KEY_TYPE:
            return verify_ed25519(public_key, digest.encode(), signature)
        if method.get("type") == SECP256K1_KEY_TYPE:
            return verify_secp256k1(digest, signature, public_key)
        return False
