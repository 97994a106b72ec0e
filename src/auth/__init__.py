from .base import IdentityVerifier
from .providers.grpc_web import GrpcWebIdentityVerifier

__all__ = ["IdentityVerifier", "GrpcWebIdentityVerifier"]
