from .auth import Principal, require_api_key

__all__ = ["Principal", "require_api_key"]
