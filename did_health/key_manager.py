"""
Key Manager - Identity material for new principals

Produces the DID identifier and key pair for a principal at registration.
Key generation is a swappable strategy:

- PlaceholderKeyGenerator: non-cryptographic demo keys (default)
- Ed25519KeyGenerator: real Ed25519 keys (W3C recommended)
- Secp256k1KeyGenerator: Ethereum compatible keys

Nothing in this module performs I/O or keeps state between calls.
"""

import re
import base64
import secrets
import logging
from typing import Optional, Dict, Any, Protocol
from dataclasses import dataclass
from datetime import datetime, timezone

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from eth_account import Account
from eth_account.messages import encode_defunct

logger = logging.getLogger(__name__)

ED25519_KEY_TYPE = "Ed25519VerificationKey2020"
SECP256K1_KEY_TYPE = "EcdsaSecp256k1VerificationKey2019"
PLACEHOLDER_KEY_TYPE = "PlaceholderVerificationKey2024"

# 6 bytes = 48 bits of entropy in the DID suffix
DID_SUFFIX_BYTES = 6
MAX_NAME_FRAGMENT = 32


@dataclass(frozen=True)
class KeyPair:
    """Represents a key pair bound to a DID"""
    key_id: str
    key_type: str
    public_key: str
    private_key: Optional[str] = None  # Demo only, never leaves the registry
    controller: str = ""
    created_at: str = ""

    def to_verification_method(self) -> Dict[str, Any]:
        """Convert to W3C Verification Method format"""
        return {
            "id": self.key_id,
            "type": self.key_type,
            "controller": self.controller,
            "publicKeyMultibase": f"z{self.public_key}"
        }

    def public_view(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "key_type": self.key_type,
            "public_key": self.public_key,
            "controller": self.controller,
            "created_at": self.created_at
        }


@dataclass(frozen=True)
class IdentityMaterial:
    """Output of identity generation: a fresh DID and its key pair"""
    did_identifier: str
    key_pair: KeyPair

    @property
    def public_key(self) -> str:
        return self.key_pair.public_key

    @property
    def private_key_material(self) -> Optional[str]:
        return self.key_pair.private_key


class KeyGenerator(Protocol):
    """Strategy that creates the primary key pair for a DID"""

    key_type: str

    def generate_keypair(self, did: str) -> KeyPair:
        ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


# ==================== KEY GENERATORS ====================

class PlaceholderKeyGenerator:
    """Random tokens shaped like keys. Not cryptographic."""

    key_type = PLACEHOLDER_KEY_TYPE

    def generate_keypair(self, did: str) -> KeyPair:
        return KeyPair(
            key_id=f"{did}#key-1",
            key_type=self.key_type,
            public_key=f"ed25519:{secrets.token_hex(16)}",
            private_key=f"ed25519:{secrets.token_hex(16)}",
            controller=did,
            created_at=_now()
        )


class Ed25519KeyGenerator:
    """Ed25519 key pairs, base64url encoded"""

    key_type = ED25519_KEY_TYPE

    def generate_keypair(self, did: str) -> KeyPair:
        private_key = ed25519.Ed25519PrivateKey.generate()

        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

        return KeyPair(
            key_id=f"{did}#key-1",
            key_type=self.key_type,
            public_key=_b64(public_bytes),
            private_key=_b64(private_bytes),
            controller=did,
            created_at=_now()
        )


class Secp256k1KeyGenerator:
    """secp256k1 key pairs; the Ethereum address stands in as public key"""

    key_type = SECP256K1_KEY_TYPE

    def generate_keypair(self, did: str) -> KeyPair:
        account = Account.create()

        return KeyPair(
            key_id=f"{did}#key-1",
            key_type=self.key_type,
            public_key=account.address,
            private_key=account.key.hex(),
            controller=did,
            created_at=_now()
        )


KEY_GENERATORS = {
    "placeholder": PlaceholderKeyGenerator,
    "ed25519": Ed25519KeyGenerator,
    "secp256k1": Secp256k1KeyGenerator,
}


def get_key_generator(name: str) -> KeyGenerator:
    """Look up a key generator by its configuration name"""
    try:
        return KEY_GENERATORS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown key type: {name}") from None


# ==================== IDENTITY GENERATION ====================

def normalize_name(display_name: str) -> str:
    """Lower-case alphanumeric fragment of a display name"""
    return re.sub(r"[^a-z0-9]", "", display_name.lower())[:MAX_NAME_FRAGMENT]


def make_did_identifier(method: str, role: str, display_name: str) -> str:
    """
    Build did:<method>:<role><name><suffix>

    The random suffix carries 48 bits of entropy; uniqueness is still
    enforced by the identity registry.
    """
    suffix = secrets.token_hex(DID_SUFFIX_BYTES)
    return f"did:{method}:{role.lower()}{normalize_name(display_name)}{suffix}"


class KeyManager:
    """
    Generates identity material for principals

    Features:
    - DID identifier derivation (method + role + name + random suffix)
    - Pluggable key pair generation
    """

    def __init__(self, generator: Optional[KeyGenerator] = None, method: str = "example"):
        self.generator = generator or PlaceholderKeyGenerator()
        self.method = method

    def generate(self, role: str, display_name: str) -> IdentityMaterial:
        """
        Generate a DID and key pair for a new principal

        Args:
            role: Principal role (patient, doctor, admin)
            display_name: Human readable name used in the DID fragment

        Returns:
            IdentityMaterial with did_identifier, public key and private material
        """
        if not role:
            raise ValueError("Role is required")

        did = make_did_identifier(self.method, role, display_name or "")
        return IdentityMaterial(did_identifier=did, key_pair=self.generator.generate_keypair(did))


# ==================== SIGNING ====================

def sign_ed25519(private_key: str, message: bytes) -> str:
    """
    Sign message with an Ed25519 key

    Args:
        private_key: base64url encoded raw private key
        message: Message bytes to sign

    Returns:
        base64url encoded signature
    """
    key = ed25519.Ed25519PrivateKey.from_private_bytes(_unb64(private_key))
    return _b64(key.sign(message))


def sign_secp256k1(private_key: str, message: str) -> str:
    """Sign message with a secp256k1 key (Ethereum personal_sign style)"""
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return signed.signature.hex()


# ==================== VERIFICATION ====================

def verify_ed25519(public_key: str, message: bytes, signature: str) -> bool:
    """Verify Ed25519 signature against a base64url public key"""
    try:
        pub_key = ed25519.Ed25519PublicKey.from_public_bytes(_unb64(public_key))
        pub_key.verify(_unb64(signature), message)
        return True
    except (InvalidSignature, ValueError):
        return False


def verify_secp256k1(message: str, signature: str, expected_address: str) -> bool:
    """Verify secp256k1 signature by recovering the signer address"""
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.debug("secp256k1 recovery failed: %s", e)
        return False
    return recovered.lower() == expected_address.lower()
