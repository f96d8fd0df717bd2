"""
Check registry for centralized check management.

The registry pattern provides:
- Explicit control over which checks are available
- CLI integration (--check, --exclude)
- Testing isolation (register only specific checks)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from rulesense.checker.checks.base import Check

T = TypeVar("T", bound="Check")


class CheckRegistry:
    """
    Centralized registry for all checks.

    Checks register themselves using the @register_check decorator.
    The linter queries the registry to get available checks.

    Example:
        # In a check module:
        @register_check
        class MyCheck(Check):
            check_id = "promql/mine"
            ...

        # In linter or CLI:
        registry = get_registry()
        checks = registry.filter(exclude={"promql/counter"})
    """

    def __init__(self) -> None:
        self._checks: dict[str, type[Check]] = {}

    def register(self, check_cls: type[T]) -> type[T]:
        """
        Register a check class.

        Raises:
            ValueError: If a check with the same ID is already registered
        """
        check_id = check_cls.check_id

        if check_id in self._checks:
            existing = self._checks[check_id]
            raise ValueError(
                f"Check '{check_id}' already registered by {existing.__module__}.{existing.__name__}. "
                f"Cannot register {check_cls.__module__}.{check_cls.__name__}"
            )

        self._checks[check_id] = check_cls
        return check_cls

    def unregister(self, check_id: str) -> bool:
        """
        Remove a check from the registry.

        Returns:
            True if check was found and removed, False otherwise
        """
        if check_id in self._checks:
            del self._checks[check_id]
            return True
        return False

    def get(self, check_id: str) -> type[Check] | None:
        return self._checks.get(check_id)

    def all(self) -> list[type[Check]]:
        """All registered check classes, in registration order."""
        return list(self._checks.values())

    def all_ids(self) -> list[str]:
        return list(self._checks.keys())

    def filter(
        self,
        include: set[str] | None = None,
        exclude: set[str] | None = None,
    ) -> list[type[Check]]:
        """
        Get a filtered list of check classes.

        Args:
            include: If provided, only include these check IDs
            exclude: If provided, exclude these check IDs

        Example:
            # Only run specific checks
            checks = registry.filter(include={"promql/aggregate"})
        """
        checks = self.all()

        if include is not None:
            checks = [c for c in checks if c.check_id in include]

        if exclude is not None:
            checks = [c for c in checks if c.check_id not in exclude]

        return checks

    def clear(self) -> None:
        """Remove all registered checks (primarily useful for testing)."""
        self._checks.clear()

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, check_id: str) -> bool:
        return check_id in self._checks


# Global registry instance
_global_registry = CheckRegistry()


def get_registry() -> CheckRegistry:
    """Get the global check registry."""
    return _global_registry


def register_check(check_cls: type[T]) -> type[T]:
    """
    Decorator to register a check with the global registry.

    Example:
        @register_check
        class ImpossibleCheck(Check):
            check_id = "promql/impossible"
            ...
    """
    return _global_registry.register(check_cls)
