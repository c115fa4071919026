"""hookrelay: relay GitHub push webhooks into ephemeral webhook sandboxes."""

__version__ = "0.1.0"

__all__ = ["__version__"]
