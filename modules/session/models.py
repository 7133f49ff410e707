"""
Session module data models.

These models define the profile document stored for each identity, the
inputs accepted by registration and profile updates, and the reconciled
UserView handed to the UI layer.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field

from shared.fields import AliasTable, resolve_aliases

MIN_AGE = 18


class SessionState(str, Enum):
    """SessionManager states."""

    SIGNED_OUT = "signed_out"
    AUTHENTICATING = "authenticating"  # Login, register or reauthentication in flight
    SIGNED_IN = "signed_in"


class Specialty(str, Enum):
    """Specialties a member can pick."""

    SOFTWARE = "Software"
    DESIGN = "Diseño"
    EMCA = "Emca"
    ARCHITECTURE = "Arquitectura"
    ACCOUNTING = "Contaduría"


# Canonical profile field -> legacy stored names, most preferred first
PROFILE_FIELD_ALIASES: AliasTable = {
    "last_login_at": ("lastLoginAt", "lastLogin"),
    "created_at": ("createdAt",),
    "updated_at": ("updatedAt",),
    "email_verified": ("emailVerified",),
    "profile_complete": ("profileComplete",),
}


class ProfileDocument(BaseModel):
    """
    Application profile stored in the document store, keyed by identity id.

    Every field except the id may be missing: documents written by older
    clients or by a partially failed registration are still loadable.
    """

    id: str = Field(..., description="Identity id this profile belongs to")
    name: Optional[str] = Field(None, description="Full name")
    email: Optional[str] = Field(None, description="Normalised email")
    age: Optional[int] = Field(None, ge=MIN_AGE, description="Age in years")
    specialty: Optional[str] = Field(None, description="Specialty value")
    email_verified: Optional[bool] = Field(None, description="Copy of the identity flag at write time")
    profile_complete: bool = Field(default=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ProfileDocument":
        """Parse a raw stored document, resolving legacy field names."""
        return cls.model_validate(resolve_aliases(document, PROFILE_FIELD_ALIASES))


class ProfileInput(BaseModel):
    """Registration input."""

    email: str = Field(..., description="Email, normalised before use")
    password: str = Field(..., repr=False)
    name: Optional[str] = Field(None, description="Full name, also used as display name")
    age: int = Field(..., ge=MIN_AGE)
    specialty: Specialty


class ProfileUpdate(BaseModel):
    """Partial profile change. Unset fields are left untouched."""

    name: Optional[str] = Field(None, min_length=1)
    age: Optional[int] = Field(None, ge=MIN_AGE)
    specialty: Optional[Specialty] = None

    def changes(self) -> dict[str, Any]:
        """Fields to write, keyed by canonical stored name."""
        changes = self.model_dump(exclude_none=True, mode="json")
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        return changes


class UserView(BaseModel):
    """
    Reconciled, read-only view of the signed-in user.

    Profile fields win over identity fields, except email_verified and
    display_name which always come from the identity provider.
    """

    id: str
    email: str
    display_name: Optional[str] = None
    email_verified: bool = False

    # Profile-only fields, unset when no profile is available
    name: Optional[str] = None
    age: Optional[int] = None
    specialty: Optional[str] = None
    profile_complete: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    has_profile: bool = Field(default=False, description="Whether a profile document was merged in")

    model_config = {"frozen": True}
