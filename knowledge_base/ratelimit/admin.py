"""
Admin allowlist parsing and the directory lookup used for rate-limit bypass
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_ADMIN_EMAILS = 10
MAX_ADMIN_EMAILS_RAW_LENGTH = 5000
MAX_EMAIL_LENGTH = 254

EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def is_valid_email(email: Optional[str]) -> bool:
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    return EMAIL_REGEX.match(email) is not None


def parse_admin_emails(raw: Optional[str]) -> List[str]:
    """Parse a comma separated admin list with size limits and de-duplication"""
    if not raw:
        logger.warning("ADMIN_EMAILS environment variable not set")
        return []

    if len(raw) > MAX_ADMIN_EMAILS_RAW_LENGTH:
        logger.error("ADMIN_EMAILS environment variable is too long, ignoring for security")
        return []

    emails = [email.strip() for email in raw.split(",") if email.strip()]
    if len(emails) > MAX_ADMIN_EMAILS:
        logger.warning(
            f"Too many admin emails configured ({len(emails)}), "
            f"limiting to first {MAX_ADMIN_EMAILS} for security"
        )
        emails = emails[:MAX_ADMIN_EMAILS]

    valid = []
    for email in emails:
        if is_valid_email(email):
            valid.append(email)
        else:
            logger.warning(f"Invalid admin email format detected and ignored: {email}")

    unique: List[str] = []
    seen = set()
    for email in valid:
        if email.lower() in seen:
            continue
        seen.add(email.lower())
        unique.append(email)

    if len(unique) != len(valid):
        logger.warning("Duplicate admin emails detected and removed")
    return unique


class AdminAllowlist:
    """Case-insensitive admin email membership"""

    def __init__(self, emails: Iterable[str]):
        self.emails = list(emails)
        self._lowered = {email.lower() for email in self.emails}

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "AdminAllowlist":
        return cls(parse_admin_emails(raw))

    def is_admin(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return email.lower() in self._lowered

    def __len__(self) -> int:
        return len(self.emails)


class DirectoryService(Protocol):
    """Resolves a caller identity to an email address, or None when unknown"""

    async def resolve_email(self, identity: str) -> Optional[str]:
        ...


class StaticDirectory:
    """Directory backed by a fixed identity -> email mapping"""

    def __init__(self, mapping: Optional[Dict[str, str]] = None):
        self.mapping = dict(mapping or {})

    async def resolve_email(self, identity: str) -> Optional[str]:
        return self.mapping.get(identity)

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "StaticDirectory":
        """Parse ``id=email,id2=email2``"""
        mapping = {}
        for item in (raw or "").split(","):
            if "=" not in item:
                continue
            identity, email = item.split("=", 1)
            if identity.strip() and email.strip():
                mapping[identity.strip()] = email.strip()
        return cls(mapping)
