from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from hvacflow.config import Settings
from hvacflow.logging import get_logger
from hvacflow.service.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from hvacflow.storage.errors import ConstraintViolation
from hvacflow.storage.memory import MemoryStore
from hvacflow.storage.models import DynamicLink

logger = get_logger(__name__)

LINK_TYPES = (
    "offer",
    "contract",
    "report",
    "invoice",
    "form",
    "service_order",
    "customer_portal",
    "document",
    "custom",
)

_SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{2,63}$")


class LinkService:
    """Issues expiring, optionally password-protected shareable links."""

    def __init__(self, store: MemoryStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def link_path(self, token: str) -> str:
        return f"{self.settings.link_path_prefix}/{token}"

    def full_url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.settings.app_base_url}{path}"

    def create_link(
        self,
        *,
        link_type: str,
        title: str,
        description: Optional[str] = None,
        expires_in_days: Optional[int] = None,
        password: Optional[str] = None,
        resource_id: Optional[str] = None,
        custom_slug: Optional[str] = None,
        created_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DynamicLink:
        if link_type not in LINK_TYPES:
            raise ValidationError(
                f"unsupported link type {link_type!r}", detail={"allowed": list(LINK_TYPES)}
            )
        days = expires_in_days or self.settings.link_default_expiry_days
        if days <= 0:
            raise ValidationError("expiresInDays must be positive", detail={"expiresInDays": days})
        if custom_slug is not None and not _SLUG_PATTERN.match(custom_slug):
            raise ValidationError(
                "custom slug must be 3-64 lowercase letters, digits, '-' or '_'",
                detail={"customSlug": custom_slug},
            )
        password_hash = self._pwd_hasher.hash(password) if password else None
        link = DynamicLink.new(
            link_type,
            title,
            expires_in_days=days,
            token=custom_slug,
            resource_id=resource_id,
            description=description,
            created_by=created_by,
            password_hash=password_hash,
            metadata=metadata,
            custom_slug=custom_slug,
        )
        try:
            self.store.create_dynamic_link(link)
        except ConstraintViolation as exc:
            raise ConflictError("link slug already in use", detail=exc.detail) from exc
        logger.info(
            "dynamic_link_created",
            link_id=link.id,
            link_type=link_type,
            expires_at=link.expires_at.isoformat(),
            password_protected=link.password_protected,
        )
        return link

    def _require(self, token: str) -> DynamicLink:
        link = self.store.get_dynamic_link(token)
        if not link:
            raise NotFoundError("link not found", detail={"token": token})
        return link

    def verify_password(self, token: str, password: str) -> bool:
        link = self._require(token)
        if not link.password_protected:
            return True
        try:
            return self._pwd_hasher.verify(link.password_hash, password)
        except (InvalidHash, VerifyMismatchError):
            logger.warning("link_password_mismatch", link_id=link.id)
            return False

    def deactivate(self, token: str) -> DynamicLink:
        self._require(token)
        link = self.store.update_dynamic_link(token, is_active=False)
        logger.info("dynamic_link_deactivated", link_id=link.id)
        return link

    def record_access(self, token: str, *, now: Optional[datetime] = None) -> DynamicLink:
        link = self._require(token)
        if not link.is_active or link.is_expired(now):
            raise ConflictError("link is no longer active", detail={"token": token})
        return self.store.update_dynamic_link(
            token,
            access_count=link.access_count + 1,
            last_accessed_at=now or datetime.utcnow(),
        )

    def open_link(
        self,
        token: str,
        *,
        password: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DynamicLink:
        """Resolve a shared link for a visitor and count the access."""
        link = self._require(token)
        if not link.is_active or link.is_expired(now):
            raise ConflictError("link is no longer active", detail={"token": token})
        if link.password_protected:
            if not password:
                raise AuthenticationError("password required", detail={"token": token})
            if not self.verify_password(token, password):
                raise AuthenticationError("invalid password", detail={"token": token})
        return self.record_access(token, now=now)
