"""
Decentralized Identity (DID) Healthcare Core
=============================================

DID based identity and W3C Verifiable Credentials for a healthcare portal

Components:
- KeyManager: DID identifiers and key pairs for new principals
- DIDManager: DID Documents and the identity registry
- CredentialFactory: Builds signed Verifiable Credentials
- CredentialStore: Async credential persistence
- CredentialVerifier: Verifies presented credentials
- IssuanceService: Doctor-to-patient issuance
- DIDService: Main integration service

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .errors import (
    DIDHealthError,
    Forbidden,
    NotFound,
    InvalidCredentialType,
    ValidationError,
    MalformedCredentialError,
    DuplicateError,
    StoreUnavailable,
)
from .config import DIDSettings, settings, get_settings
from .key_manager import KeyManager, KeyPair, IdentityMaterial, get_key_generator
from .did_manager import DIDManager, DIDDocument, ServiceEndpoint, Principal, Role, build_did_document, add_service
from .proofs import PlaceholderSigner, PlaceholderSignatureChecker, KeyPairSigner, KeyPairSignatureChecker
from .credential_issuer import CredentialFactory, CredentialType, CredentialTypeRegistry, VerifiableCredential
from .credential_store import CredentialStore, CredentialStatus, StoredCredential
from .credential_verifier import CredentialVerifier, VerificationReport
from .issuance import IssuanceService, IssuedCredential
from .notifications import NotificationCenter, Notification
from .did_service import DIDService

__version__ = "1.0.0"
__all__ = [
    # Errors
    "DIDHealthError",
    "Forbidden",
    "NotFound",
    "InvalidCredentialType",
    "ValidationError",
    "MalformedCredentialError",
    "DuplicateError",
    "StoreUnavailable",

    # Config
    "DIDSettings",
    "settings",
    "get_settings",

    # Core DID
    "DIDManager",
    "DIDDocument",
    "ServiceEndpoint",
    "Principal",
    "Role",
    "build_did_document",
    "add_service",

    # Keys
    "KeyManager",
    "KeyPair",
    "IdentityMaterial",
    "get_key_generator",

    # Proofs
    "PlaceholderSigner",
    "PlaceholderSignatureChecker",
    "KeyPairSigner",
    "KeyPairSignatureChecker",

    # Credentials
    "CredentialFactory",
    "CredentialType",
    "CredentialTypeRegistry",
    "VerifiableCredential",
    "CredentialStore",
    "CredentialStatus",
    "StoredCredential",
    "CredentialVerifier",
    "VerificationReport",
    "IssuanceService",
    "IssuedCredential",

    # Notifications
    "NotificationCenter",
    "Notification",

    # Service
    "DIDService"
]
