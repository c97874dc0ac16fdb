"""Backend operations shared by the payment-processor workers."""

__version__ = "0.1.0"
