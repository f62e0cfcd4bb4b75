"""External integrations for STK payments."""
from .pesaflux_client import PesaFluxClient, PesaFluxError, PesaFluxErrorType

__all__ = ["PesaFluxClient", "PesaFluxError", "PesaFluxErrorType"]
