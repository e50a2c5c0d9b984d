"""Persisted project context.

A short description of the project (name, what it is, stack) stored in
``.taskpilot/project.json`` inside the workspace. It is read once per run
and embedded in the system prompt as advisory background.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from taskpilot.adapters.workspace.base import WorkspaceBackend, WorkspaceError

logger = logging.getLogger(__name__)

CONTEXT_PATH = ".taskpilot/project.json"

# Ordered: the first industry whose keywords match wins
_INDUSTRY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("restaurant", ("restaurant", "menu", "pizzeria", "cafe")),
    ("e-commerce", ("e-commerce", "ecommerce", "shop", "store", "products")),
    ("portfolio", ("portfolio", "resume", "freelancer")),
    ("blog", ("blog", "articles")),
    ("landing-page", ("landing", "startup", "saas")),
]

_FEATURE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("cart", ("cart",)),
    ("products", ("products", "catalog")),
    ("authentication", ("login", "auth", "sign up", "signup")),
    ("payments", ("payment", "checkout")),
    ("contact-form", ("contact",)),
    ("gallery", ("gallery",)),
    ("search", ("search",)),
    ("filters", ("filter",)),
]


class ProjectContext(BaseModel):
    """Background facts about the project. Read-only to the agent loop."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    description: str = ""
    technology: Optional[str] = None
    industry: Optional[str] = None
    features: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


def detect_industry(description: Optional[str]) -> str:
    """Guess the project's industry from its description."""
    if not description:
        return "general"
    lower = description.lower()
    for industry, keywords in _INDUSTRY_KEYWORDS:
        if any(k in lower for k in keywords):
            return industry
    return "general"


def extract_features(description: Optional[str]) -> list[str]:
    """List the features a description mentions."""
    if not description:
        return []
    lower = description.lower()
    return [feature for feature, keywords in _FEATURE_KEYWORDS if any(k in lower for k in keywords)]


def build_project_context(
    name: str, description: str = "", technology: Optional[str] = None
) -> ProjectContext:
    """Create a context, deriving industry and features from the description."""
    return ProjectContext(
        name=name,
        description=description,
        technology=technology,
        industry=detect_industry(description),
        features=extract_features(description),
        created_at=datetime.now(timezone.utc),
    )


def load_project_context(workspace: WorkspaceBackend) -> Optional[ProjectContext]:
    """Read the persisted context, or None if absent or unreadable."""
    try:
        raw = workspace.read_file(CONTEXT_PATH)
    except WorkspaceError:
        return None
    try:
        return ProjectContext.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring invalid project context in %s: %s", CONTEXT_PATH, e)
        return None


def save_project_context(workspace: WorkspaceBackend, context: ProjectContext) -> None:
    """Persist *context* to the workspace."""
    payload = context.model_dump(mode="json", by_alias=True, exclude_none=True)
    workspace.write_file(CONTEXT_PATH, json.dumps(payload, indent=2) + "\n")
