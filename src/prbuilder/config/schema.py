"""Pydantic schema models for configuration.

This module defines the configuration models:
- Config: Top-level configuration container
- GitHubConfig: GitHub API settings
- WebhookConfig: Webhook signature settings
- StatusConfig: Commit status reporting
- BuildConfig: Build trigger settings
- RepositoryConfig: One watched repository and its trigger policy
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Default phrases, matched case-insensitively anywhere in the text
DEFAULT_TRIGGER_PHRASE = r"test\W+this\W+please"
DEFAULT_SKIP_BUILD_PHRASE = r"\[skip\W+ci\]"

# Owner/repo names as accepted by GitHub
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class SignatureAlgorithm(str, Enum):
    """Hash used for webhook HMAC signatures.

    sha1 matches the legacy X-Hub-Signature header, sha256 matches
    X-Hub-Signature-256.
    """

    SHA1 = "sha1"
    SHA256 = "sha256"


class ReporterType(str, Enum):
    """Status reporter implementation to use."""

    COMMIT_STATUS = "commit_status"
    LOG = "log"
    NONE = "none"


class BodyChangeRule(str, Enum):
    """When a title or description edit re-triggers a build."""

    PHRASE_ADDED = "phrase_added"
    ANY_CHANGE = "any_change"
    NEVER = "never"


class BuildTriggerType(str, Enum):
    """Build trigger implementation to use."""

    HTTP = "http"
    CONSOLE = "console"


class GitHubConfig(BaseModel):
    """GitHub API configuration.

    Attributes:
        base_url: API root, change for GitHub Enterprise
        request_timeout: Per-request timeout in seconds
        max_retries: Attempts for transient failures (5xx, network)
        poll_interval: Seconds between polling cycles in daemon mode
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://api.github.com"
    request_timeout: Annotated[float, Field(gt=0, le=120)] = 10.0
    max_retries: Annotated[int, Field(ge=1, le=5)] = 2
    poll_interval: Annotated[int, Field(ge=10, le=3600)] = 60

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL without a trailing slash."""
        if not v.startswith(("https://", "http://")):
            msg = "base_url must be an http(s) URL"
            raise ValueError(msg)
        return v.rstrip("/")


class WebhookConfig(BaseModel):
    """Webhook authentication settings.

    Attributes:
        signature_algorithm: HMAC hash used by the sender
        require_signature: Reject deliveries for repositories without secrets
    """

    model_config = ConfigDict(extra="forbid")

    signature_algorithm: SignatureAlgorithm = SignatureAlgorithm.SHA1
    require_signature: bool = True


class StatusConfig(BaseModel):
    """Commit status reporting.

    Attributes:
        reporter: Which reporter to use
        context: Status context shown next to the commit
    """

    model_config = ConfigDict(extra="forbid")

    reporter: ReporterType = ReporterType.COMMIT_STATUS
    context: Annotated[str, Field(min_length=1, max_length=100)] = "default"


class BuildConfig(BaseModel):
    """Build trigger settings.

    Attributes:
        type: Trigger implementation
        url: Endpoint receiving the build cause (http only)
        timeout: HTTP timeout in seconds
    """

    model_config = ConfigDict(extra="forbid")

    type: BuildTriggerType = BuildTriggerType.CONSOLE
    url: str | None = None
    timeout: Annotated[float, Field(gt=0, le=120)] = 15.0

    @model_validator(mode="after")
    def validate_http_has_url(self) -> BuildConfig:
        """Ensure http triggers have an endpoint."""
        if self.type == BuildTriggerType.HTTP and not self.url:
            msg = "build.url is required when build.type is 'http'"
            raise ValueError(msg)
        return self


class RepositoryConfig(BaseModel):
    """A watched repository and its trigger policy.

    Attributes:
        owner: Repository owner (user or organisation)
        name: Repository name
        secrets: Webhook shared secrets, several allowed for rotation
        trigger_phrase: Regex that requests a build from a comment or body
        skip_build_phrase: Regex that suppresses automatic builds
        auto_build: Build new PRs and new commits without a phrase
        disabled: Keep the cache current but never trigger
        retrigger_on_edit: Whether title/description edits re-trigger
        allowed_authors: Login glob patterns allowed to get builds
                         (empty means everyone)
        pr_timeout: Wall-clock bound in seconds for fetching one PR's
                    trigger inputs, and for each status report
    """

    model_config = ConfigDict(extra="forbid")

    owner: Annotated[str, Field(min_length=1, max_length=100)]
    name: Annotated[str, Field(min_length=1, max_length=100)]
    secrets: list[str] = Field(default_factory=list)
    trigger_phrase: str | None = DEFAULT_TRIGGER_PHRASE
    skip_build_phrase: str | None = DEFAULT_SKIP_BUILD_PHRASE
    auto_build: bool = True
    disabled: bool = False
    retrigger_on_edit: BodyChangeRule = BodyChangeRule.PHRASE_ADDED
    allowed_authors: list[str] = Field(default_factory=list)
    pr_timeout: Annotated[float, Field(gt=0, le=600)] = 60.0

    @field_validator("owner", "name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate owner/repository name characters."""
        if not _NAME_PATTERN.match(v):
            msg = "must contain only letters, digits, '-', '_' or '.'"
            raise ValueError(msg)
        return v

    @field_validator("trigger_phrase", "skip_build_phrase")
    @classmethod
    def validate_phrase(cls, v: str | None) -> str | None:
        """Validate that phrases compile as regular expressions."""
        if v is None or v == "":
            return None
        try:
            re.compile(v)
        except re.error as e:
            msg = f"invalid regular expression: {e}"
            raise ValueError(msg) from e
        return v

    @field_validator("secrets")
    @classmethod
    def validate_secrets(cls, v: list[str]) -> list[str]:
        """Reject empty secrets."""
        if any(not s for s in v):
            msg = "secrets must not contain empty values"
            raise ValueError(msg)
        return v

    @property
    def full_name(self) -> str:
        """Get the owner/name form."""
        return f"{self.owner}/{self.name}"


class Config(BaseModel):
    """Top-level configuration loaded from YAML.

    Attributes:
        version: Schema version (must be 1)
        github: GitHub API settings
        webhook: Webhook authentication settings
        status: Commit status reporting
        build: Build trigger settings
        repositories: Watched repositories
    """

    model_config = ConfigDict(extra="forbid")

    version: Literal[1]
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    repositories: list[RepositoryConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_repositories(self) -> Config:
        """Ensure each repository is configured once."""
        names = [repo.full_name.lower() for repo in self.repositories]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            msg = f"Duplicate repositories found: {sorted(duplicates)}"
            raise ValueError(msg)
        return self

    def get_repository(self, full_name: str) -> RepositoryConfig | None:
        """Look up a repository by owner/name (case-insensitive)."""
        wanted = full_name.lower()
        for repo in self.repositories:
            if repo.full_name.lower() == wanted:
                return repo
        return None

    def get_active_repositories(self) -> list[RepositoryConfig]:
        """Return repositories that are not disabled."""
        return [repo for repo in self.repositories if not repo.disabled]
