"""Knowledge Hub: personal knowledge management with remote repository mirroring."""

__version__ = "0.1.0"
