from insign.api.routes import audit, health, public_signatures, signatures, templates

__all__ = ["audit", "health", "public_signatures", "signatures", "templates"]
