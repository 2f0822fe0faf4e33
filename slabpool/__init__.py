"""Size-class memory pool allocators over a simulated address space."""

__version__ = "0.1.0"