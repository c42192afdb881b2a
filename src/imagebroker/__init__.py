"""Image provider broker: provider selection and failover for image generation."""

__version__ = "0.1.0"
