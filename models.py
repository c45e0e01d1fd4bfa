# ─────────────────────────────────────────────────────────────────
# models.py — Data Models (Pydantic Schemas and Enums)
#
# All data shapes live here: request bodies, the tenant
# credential bundle, and the small enums shared by the storage,
# session and health-check modules.
#
# Stored records (servers, logs, deployments) are plain dicts with
# the same keys in both guest and credentialed mode, so routes never
# need to know which store produced them:
#   server     → {"name", "url", "status"}
#   log        → {"timestamp", "statuses"}
#   deployment → {"id", "version", "status", "timestamp"}
# ─────────────────────────────────────────────────────────────────

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Mode(str, Enum):
    """The two ways a session can have data access."""

    GUEST = "guest"
    CREDENTIALED = "credentialed"


class ServerStatus(str, Enum):
    UP = "Up"
    DOWN = "Down"
    UNKNOWN = "Unknown"


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class CredentialBundle(BaseModel):
    """
    A tenant's validated configuration.

    Only ever built by credentials.validate_bundle(), so an instance
    always has a non-empty backing-store address and access key.
    Secrets are excluded from repr() so a bundle can't leak into logs.
    """

    model_config = ConfigDict(frozen=True)

    mongo_uri: str = Field(repr=False)            # backing-store address
    api_key: str = Field(repr=False)              # access key
    render_api_key: str = Field(default="", repr=False)  # external provider key
    port: int = 3000                              # preferred port


class ServerCreate(BaseModel):
    """
    Body of POST /servers

    {
        "name": "svc1",
        "url": "http://svc1.internal/health"
    }
    """

    name: Optional[str] = None
    url: Optional[str] = None


class DeployRequest(BaseModel):
    """Body of POST /deploy — {"version": "1.4.2"}"""

    version: Optional[str] = None


class HealthResult(BaseModel):
    status: ServerStatus
    reason: str
