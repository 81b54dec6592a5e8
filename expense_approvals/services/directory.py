"""
User directory: the engine's narrow view of the external user system.

Users, companies and reporting lines are owned elsewhere. The engine only
needs to know who a user's manager is, which company they belong to, and
whether they may act as an approver.
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger
from pydantic import BaseModel


class UserRole(str, Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


APPROVER_ROLES = (UserRole.MANAGER, UserRole.ADMIN)


class DirectoryUser(BaseModel):
    id: str
    company_id: str
    name: str = ""
    email: str | None = None
    role: UserRole = UserRole.EMPLOYEE
    manager_id: str | None = None
    department: str | None = None


class UserDirectory(ABC):
    """Read-only lookups against the user system"""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        """Return the user, or None if unknown"""
        pass

    @abstractmethod
    def list_all(self) -> list[DirectoryUser]:
        """Every user the directory knows about"""
        pass

    def users_in_company(self, company_id: str) -> list[DirectoryUser]:
        return [user for user in self.list_all() if user.company_id == company_id]

    def manager_of(self, employee_id: str) -> Optional[str]:
        """Return the direct manager's user id, or None"""
        employee = self.get_user(employee_id)
        if employee is None:
            return None
        return employee.manager_id

    def is_eligible_approver(self, user_id: str, company_id: str) -> bool:
        """A user may approve when they are a manager or admin of the company"""
        user = self.get_user(user_id)
        return (
            user is not None
            and user.company_id == company_id
            and user.role in APPROVER_ROLES
        )

    def is_admin(self, user_id: str, company_id: str) -> bool:
        user = self.get_user(user_id)
        return user is not None and user.company_id == company_id and user.role == UserRole.ADMIN


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[DirectoryUser] = ()):
        self._users: dict[str, DirectoryUser] = {user.id: user for user in users}

    def add(self, user: DirectoryUser) -> None:
        self._users[user.id] = user

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        return self._users.get(user_id)

    def list_all(self) -> list[DirectoryUser]:
        return list(self._users.values())

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryUserDirectory":
        """
        Load a directory export.

        The file holds a JSON list of user objects (see ``DirectoryUser``).
        """
        raw_users = json.loads(Path(path).read_text(encoding="utf-8"))
        users = [DirectoryUser.model_validate(raw) for raw in raw_users]
        logger.info("Loaded user directory", path=str(path), users=len(users))
        return cls(users)
