"""Sync profiles: named filters applied to a scan before it reaches the engine."""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from dot_sync.models import ConfigCategory, TrackedFile


class SyncProfile(BaseModel):
    """A named selection of categories and files.

    Explicit exclusion wins over explicit inclusion, which wins over the
    category rule.  Files are compared by ``relative_path`` or ``filename``.
    """

    name: str
    description: str = ""
    included_categories: set[ConfigCategory] = Field(default_factory=set)
    included_files: set[str] = Field(default_factory=set)
    excluded_files: set[str] = Field(default_factory=set)

    def matches(self, file: TrackedFile) -> bool:
        names = {file.relative_path, file.filename}
        if names & self.excluded_files:
            return False
        return file.category in self.included_categories or bool(names & self.included_files)

    def filter(self, files: Iterable[TrackedFile]) -> list[TrackedFile]:
        return [f for f in files if self.matches(f)]


DEFAULT_PROFILES: dict[str, SyncProfile] = {
    "full": SyncProfile(
        name="full",
        description="All detected config files",
        included_categories=set(ConfigCategory),
    ),
    "minimal": SyncProfile(
        name="minimal",
        description="Just shell and git (quick setup)",
        included_categories={ConfigCategory.SHELL, ConfigCategory.GIT},
    ),
    "work": SyncProfile(
        name="work",
        description="Work environment (cloud CLIs, git, claude)",
        included_categories={
            ConfigCategory.SHELL,
            ConfigCategory.GIT,
            ConfigCategory.CLOUD,
            ConfigCategory.CLAUDE,
            ConfigCategory.DOCKER,
        },
    ),
    "home": SyncProfile(
        name="home",
        description="Personal machine setup",
        included_categories={
            ConfigCategory.SHELL,
            ConfigCategory.GIT,
            ConfigCategory.EDITOR,
            ConfigCategory.CLAUDE,
        },
    ),
}


def get_profile(name: str) -> SyncProfile:
    """Look up a default profile by name.

    Raises:
        KeyError: If no profile has that name.
    """
    try:
        return DEFAULT_PROFILES[name]
    except KeyError:
        choices = ", ".join(sorted(DEFAULT_PROFILES))
        raise KeyError(f"Unknown profile {name!r}; expected one of: {choices}") from None
