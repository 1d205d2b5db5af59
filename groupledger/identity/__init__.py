"""Identity matching and reference resolution package."""

from groupledger.identity.matching import (
    IdentitySet,
    MatchKind,
    MissingContactError,
    ReferenceResolver,
    UNKNOWN_NAME,
    derive_shadow_id,
)

__all__ = [
    "IdentitySet",
    "MatchKind",
    "MissingContactError",
    "ReferenceResolver",
    "UNKNOWN_NAME",
    "derive_shadow_id",
]
