from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.models import Profile, Role
from storefront.observability import increment_counter
from storefront.services.change_feed import publish_change
from storefront.services.media_service import MediaService

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class ProfileService:
    """Accounts, sign-in and profile edits."""

    def __init__(self, db_session: Session, media_service: Optional[MediaService] = None) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.media = media_service or MediaService(db_session)

    def register(
        self,
        email: Optional[str],
        password: Optional[str],
        full_name: Optional[str] = None,
        role: Role | str = Role.CUSTOMER,
    ) -> Tuple[bool, str, Optional[Profile]]:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            return False, "A valid email is required", None
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters", None
        if self.get_by_email(email):
            return False, "Email already registered.", None

        profile = Profile(
            email=email,
            full_name=(full_name or "").strip() or None,
            role=Role(role).value,
            password_hash=generate_password_hash(password),
        )
        self.db.add(profile)
        self.db.commit()

        increment_counter("accounts_registered_total", labels={"role": profile.role})
        publish_change("profiles", "INSERT", profile.id, {"role": profile.role})
        self.logger.info("Account %s registered", profile.id)
        return True, "Account created", profile

    def authenticate(self, email: Optional[str], password: Optional[str]) -> Optional[Profile]:
        profile = self.get_by_email(email)
        if profile and password and check_password_hash(profile.password_hash, password):
            return profile
        increment_counter("login_failures_total")
        return None

    def get_by_email(self, email: Optional[str]) -> Optional[Profile]:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return self.db.query(Profile).filter(func.lower(Profile.email) == normalized).first()

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.db.query(Profile).filter_by(id=user_id).first()

    def update_profile(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Profile]]:
        profile = self.get_profile(user_id)
        if not profile:
            return False, "Profile not found", None
        if full_name is not None:
            profile.full_name = full_name.strip() or None
        if avatar_url is not None:
            profile.avatar_url = avatar_url.strip() or None
        self.db.commit()
        publish_change("profiles", "UPDATE", profile.id)
        return True, "Profile updated", profile

    def upload_avatar(self, user_id: str, upload: Optional[FileStorage]) -> Tuple[bool, str, Optional[Profile]]:
        profile = self.get_profile(user_id)
        if not profile:
            return False, "Profile not found", None
        success, message, url = self.media.upload_avatar(user_id, upload)
        if not success:
            return False, message, None
        profile.avatar_url = url
        self.db.commit()
        return True, "Avatar updated", profile

    # ------------------------------------------------------------------
    # Customer manager
    # ------------------------------------------------------------------
    def list_profiles(self, search: Optional[str] = None) -> List[Profile]:
        query = self.db.query(Profile)
        term = (search or "").strip()
        if term:
            pattern = f"%{term}%"
            query = query.filter(or_(Profile.email.ilike(pattern), Profile.full_name.ilike(pattern)))
        return query.order_by(Profile.created_at.desc()).all()

    def set_role(self, user_id: str, role: Role | str) -> Tuple[bool, str, Optional[Profile]]:
        try:
            raw = role.value if isinstance(role, Role) else str(role)
            role_value = Role(raw.strip().lower()).value
        except ValueError:
            return False, f"Unknown role {role}", None
        profile = self.get_profile(user_id)
        if not profile:
            return False, "Profile not found", None
        profile.role = role_value
        self.db.commit()
        publish_change("profiles", "UPDATE", profile.id, {"role": role_value})
        self.logger.info("Role for %s set to %s", profile.id, role_value)
        return True, f"Role updated to {role_value}", profile
