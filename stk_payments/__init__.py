"""STK Payments - M-Pesa STK push payments through PesaFlux."""

__version__ = "1.0.0"
