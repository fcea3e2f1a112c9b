"""Diagnostic snapshots of the readiness coordinator."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ServiceStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    ready: bool = False
    has_instance: bool = False


class CoordinatorStatus(BaseModel):
    """Point-in-time view of every tracked service."""

    model_config = ConfigDict(frozen=True)

    all_ready: bool = False
    services: dict[str, ServiceStatus] = Field(default_factory=dict)

    def pending(self) -> list[str]:
        """Names of services that are not ready yet."""
        return [name for name, status in self.services.items() if not status.ready]
