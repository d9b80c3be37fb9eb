"""Set-backed user and case directories.

Hosts normally adapt their own user/case services to the
:class:`UserDirectory` / :class:`CaseDirectory` interfaces; these static
versions cover embedded use and tests.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .interfaces import CaseDirectory, UserDirectory


class StaticUserDirectory(UserDirectory):
    """Known users from a fixed set. ``None`` means every user exists."""

    def __init__(self, user_ids: Optional[Iterable[str]] = None) -> None:
        self._user_ids = set(user_ids) if user_ids is not None else None

    def add(self, user_id: str) -> None:
        if self._user_ids is not None:
            self._user_ids.add(user_id)

    def exists(self, user_id: str) -> bool:
        return self._user_ids is None or user_id in self._user_ids


class StaticCaseDirectory(CaseDirectory):
    """Known ``(case_id, tenant_id)`` pairs. ``None`` means every case exists.

    A case registered with ``tenant_id=None`` is visible to every tenant.
    """

    def __init__(self, cases: Optional[Iterable[tuple[str, Optional[str]]]] = None) -> None:
        self._cases = set(cases) if cases is not None else None

    def exists(self, case_id: str, tenant_id: Optional[str]) -> bool:
        if self._cases is None:
            return True
        return (case_id, tenant_id) in self._cases or (case_id, None) in self._cases
