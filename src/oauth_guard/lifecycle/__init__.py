"""OAuth 2.0 token lifecycle core.

This namespace hosts **HTTP-agnostic** building blocks for issuing,
verifying, rotating and revoking tokens behind a PKCE-protected
authorization-code grant.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
crypto
    Random generation, hashing, HMAC, constant-time comparison and AES-256-GCM
    encryption of stored records.
pkce
    Proof-Key for Code Exchange (S256 only).
redirect
    Exact-match, runtime-editable redirect URI whitelist plus protocol policy.
state
    Signed authorization codes.
models
    Immutable dataclasses for attempts, refresh records and revocations.
errors
    Exception types mapped onto OAuth 2.0 error codes by outer layers.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).
config
    :class:`TokenConfig` and its environment loader.
store / registry
    Live refresh-token storage and the revocation ledger.
tokens / rotation / flow
    Issuance and verification, rotation with reuse detection, and the
    authorization-code exchange.
service
    :class:`TokenLifecycleService` façade.

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, default_clock  # noqa: F401
from .config import TokenConfig  # noqa: F401
from .crypto import decrypt, encrypt, generate_encryption_key  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    DecryptionError,
    InvalidGrantError,
    InvalidParameterError,
    InvalidRedirectError,
    OAuthGuardError,
)
from .log_utils import get_lifecycle_logger  # noqa: F401
from .models import (  # noqa: F401
    AuthAttemptRecord,
    IssuedRefreshToken,
    RefreshTokenRecord,
    RevocationEntry,
    TokenPair,
)
from .pkce import (  # noqa: F401
    PkcePair,
    code_challenge_s256,
    generate_code_verifier,
    generate_pkce_pair,
    verify_code_challenge,
)
from .redirect import RedirectWhitelist, validate_redirect_uri  # noqa: F401
from .registry import RevocationRegistry  # noqa: F401
from .rotation import RotationEngine  # noqa: F401
from .service import TokenLifecycleService, default_service  # noqa: F401
from .store import DiskTokenStore, MemoryTokenStore, TokenStore  # noqa: F401
from .tokens import TokenIssuer  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "ManualClock",
    "default_clock",
    # config
    "TokenConfig",
    # crypto
    "encrypt",
    "decrypt",
    "generate_encryption_key",
    # errors
    "OAuthGuardError",
    "InvalidParameterError",
    "InvalidGrantError",
    "InvalidRedirectError",
    "ConfigurationError",
    "DecryptionError",
    # logging helpers
    "get_lifecycle_logger",
    # models
    "AuthAttemptRecord",
    "IssuedRefreshToken",
    "RefreshTokenRecord",
    "RevocationEntry",
    "TokenPair",
    # pkce
    "PkcePair",
    "generate_code_verifier",
    "code_challenge_s256",
    "verify_code_challenge",
    "generate_pkce_pair",
    # redirect
    "RedirectWhitelist",
    "validate_redirect_uri",
    # storage
    "TokenStore",
    "MemoryTokenStore",
    "DiskTokenStore",
    "RevocationRegistry",
    # engine
    "TokenIssuer",
    "RotationEngine",
    "TokenLifecycleService",
    "default_service",
]
