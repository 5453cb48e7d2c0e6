"""Authorization seam consulted before reads and writes.

Membership and tenancy are enforced elsewhere; the pipeline only asks the
two questions below and stops on ``AccessDeniedError``.
"""

from abc import ABC, abstractmethod

from src.core.errors import AccessDeniedError


class AccessPolicy(ABC):
    """Read/write gate injected into the orchestrators."""

    @abstractmethod
    def assert_read_access(self, search_id: str) -> None:
        """Raise AccessDeniedError if the caller may not read this search."""

    @abstractmethod
    def assert_write_allowed(self, organization_id: str) -> None:
        """Raise AccessDeniedError if the caller may not mutate this organization's data."""


class AllowAllAccess(AccessPolicy):
    """Policy for trusted local use (CLI, background workers)."""

    def assert_read_access(self, search_id: str) -> None:
        return None

    def assert_write_allowed(self, organization_id: str) -> None:
        return None


class OrganizationAccess(AccessPolicy):
    """Allow only a fixed set of organizations; searches resolve to their owner."""

    def __init__(self, organization_ids: set[str], search_owner: dict[str, str]) -> None:
        self._orgs = organization_ids
        self._owners = search_owner

    def assert_read_access(self, search_id: str) -> None:
        owner = self._owners.get(search_id)
        if owner is None or owner not in self._orgs:
            msg = f"Read access denied for search {search_id}"
            raise AccessDeniedError(msg)

    def assert_write_allowed(self, organization_id: str) -> None:
        if organization_id not in self._orgs:
            msg = f"Write access denied for organization {organization_id}"
            raise AccessDeniedError(msg)
