"""
Error taxonomy for the DID healthcare core
===========================================

Every component raises one of these typed errors. The HTTP layer renders
them through a single handler using ``kind`` and ``message``.
"""

from typing import Dict, Any


class DIDHealthError(Exception):
    """Base class for all core errors"""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class Forbidden(DIDHealthError):
    """Role or ownership violation (non-doctor issuing, non-issuer revoking)"""

    kind = "forbidden"


class NotFound(DIDHealthError):
    """Referenced DID, credential or patient does not exist"""

    kind = "not_found"


class InvalidCredentialType(DIDHealthError):
    """Credential type is not registered"""

    kind = "invalid_type"


class ValidationError(DIDHealthError):
    """Input failed a precondition (empty DID, wrong role, ...)"""

    kind = "validation_error"


class MalformedCredentialError(DIDHealthError):
    """Verification input is not parseable or structurally invalid"""

    kind = "malformed_credential"


class DuplicateError(DIDHealthError):
    """Attempted to persist the same credential or identity twice"""

    kind = "duplicate"


class StoreUnavailable(DIDHealthError):
    """Transient store failure or timeout; no partial write happened"""

    kind = "store_unavailable"
