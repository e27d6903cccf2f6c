from __future__ import annotations

from fastapi import HTTPException, Request

from creator_studio.connections import SUPPORTED_PLATFORMS, ConnectionManager
from creator_studio.identity import PROVIDERS, IdentityService
from creator_studio.publishing import PublishWorkflow
from creator_studio.uploads import AssetStore


def get_connections(request: Request) -> ConnectionManager:
    return request.app.state.connections


def get_publisher(request: Request) -> PublishWorkflow:
    return request.app.state.publisher


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


def get_assets(request: Request) -> AssetStore:
    return request.app.state.assets


def known_platform(platform: str) -> str:
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(status_code=404, detail="Unknown platform")
    return platform


def known_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail="Unknown provider")
    return provider
