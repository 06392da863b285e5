import logging
from dataclasses import dataclass, field
from typing import Optional

from .crm import CRMClient
from .errors import CRMError, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

USER_DOCTYPE = "User"
PROFILE_DOCTYPE = "Custom User Register"
USER_FIELDS = ["name", "email", "first_name", "full_name", "mobile_no"]


class UserNotFound(NotFound):
    pass


@dataclass
class Identity:
    user: dict
    profile: dict = field(default_factory=dict)

    @property
    def user_name(self) -> str:
        return self.user.get("name") or self.user.get("email")

    @property
    def first_name(self) -> Optional[str]:
        return self.user.get("first_name") or self.profile.get("customer_name")

    @property
    def phone(self) -> Optional[str]:
        return self.profile.get("telephone") or self.user.get("mobile_no")

    @property
    def company_name(self) -> Optional[str]:
        return self.profile.get("company_name")

    @property
    def sales_person(self) -> Optional[str]:
        return self.profile.get("reference")


class IdentityResolver:
    def __init__(self, crm: CRMClient):
        self.crm = crm

    def find_user(self, email: str) -> Optional[dict]:
        email = (email or "").strip()
        if not email:
            raise ValidationFailed("Email is required to find user")
        try:
            return self.crm.get(USER_DOCTYPE, email)
        except CRMError as exc:
            if not exc.is_not_found:
                raise
        return self.crm.find(USER_DOCTYPE, [["email", "=", email]], fields=USER_FIELDS)

    def resolve_user(self, email: str) -> dict:
        user = self.find_user(email)
        if not user:
            logger.error("no user registered for %s", email)
            raise UserNotFound("User not found. Please register first.")
        return user

    def find_profile(self, user_name: str) -> dict:
        try:
            profile = self.crm.find(PROFILE_DOCTYPE, [["user", "=", user_name]])
        except CRMError as exc:
            logger.warning("registration profile lookup failed for %s: %s", user_name, exc.message)
            return {}
        if not profile:
            logger.warning("no registration profile for %s, continuing without it", user_name)
            return {}
        return profile

    def resolve(self, email: str) -> Identity:
        user = self.resolve_user(email)
        identity = Identity(user=user)
        identity.profile = self.find_profile(identity.user_name)
        return identity
