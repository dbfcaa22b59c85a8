"""Remote resource adapters for the LubeLogger API."""

from .base import (
    DecodeFailure,
    ResourceAdapter,
    ResourceEndpoints,
    RestResource,
    extract_created_id,
)
from .registry import (
    RECORD_ENDPOINTS,
    VEHICLE_ENDPOINTS,
    ResourceRegistry,
    build_default_registry,
)
from .system import SystemResource, UserResource

__all__ = [
    "DecodeFailure",
    "RECORD_ENDPOINTS",
    "VEHICLE_ENDPOINTS",
    "ResourceAdapter",
    "ResourceEndpoints",
    "ResourceRegistry",
    "RestResource",
    "SystemResource",
    "UserResource",
    "build_default_registry",
    "extract_created_id",
]
