"""HTTP transport for the case-management backend."""

from .api_client import ApiClient
from .gateway import DispatchGateway

__all__ = ["ApiClient", "DispatchGateway"]
