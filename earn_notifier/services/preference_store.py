"""
In-memory storage of users and their notification preferences.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models.user import User, UserPreferences

logger = logging.getLogger(__name__)


class InMemoryPreferenceStore:
    """Keeps users in process memory; contents are lost on restart."""

    def __init__(self):
        self._users: Dict[int, User] = {}
        self._lock = threading.Lock()

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def create_user(self, user_id: int) -> User:
        """Register a user with default, unconfigured preferences."""
        user = User(id=user_id)
        with self._lock:
            self._users[user_id] = user
        logger.info(f"Created user {user_id}")
        return user

    def get_or_create_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if user is None:
            user = self.create_user(user_id)
        return user

    def apply_preferences(self, user_id: int, preferences: UserPreferences) -> User:
        """
        Replace a user's full preference set and mark them configured.

        Unknown users are created first. The update is all-or-nothing:
        invalid preferences leave the stored user untouched.

        Raises:
            ValueError: If the preferences fail validation
        """
        normalized = replace(
            preferences,
            geography=(preferences.geography or "").strip() or None,
            skills=self._normalize_skills(preferences.skills),
        )
        normalized.validate()

        with self._lock:
            user = self._users.get(user_id) or User(id=user_id)
            updated = replace(
                user,
                preferences=normalized,
                is_configured=True,
                is_active=True,
                updated_at=datetime.now(timezone.utc),
            )
            self._users[user_id] = updated

        logger.info(f"Applied preferences for user {user_id}")
        return updated

    def reactivate_user(self, user_id: int) -> bool:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            user.is_active = True
            user.updated_at = datetime.now(timezone.utc)

        logger.info(f"Reactivated user {user_id}")
        return True

    def deactivate_user(self, user_id: int) -> bool:
        """Exclude a user from notifications until they configure again."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            user.is_active = False
            user.updated_at = datetime.now(timezone.utc)

        logger.warning(f"Deactivated user {user_id}")
        return True

    def get_configured_users(self) -> List[User]:
        with self._lock:
            return [u for u in self._users.values() if u.can_receive_notifications]

    def get_all_users(self) -> List[User]:
        with self._lock:
            return list(self._users.values())

    @staticmethod
    def _normalize_skills(skills: Optional[List[str]]) -> List[str]:
        normalized: List[str] = []
        for skill in skills or []:
            tag = skill.strip().lower() if isinstance(skill, str) else skill
            if tag and tag not in normalized:
                normalized.append(tag)
        return normalized
