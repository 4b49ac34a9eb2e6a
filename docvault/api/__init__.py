"""DocVault HTTP surface (FastAPI)."""

from docvault.api.app import VaultServices, build_services, create_app

__all__ = ["VaultServices", "build_services", "create_app"]
