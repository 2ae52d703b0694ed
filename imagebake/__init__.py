"""imagebake - Build machine images from Packer sources.

This package wraps HashiCorp Packer: it fetches image sources from git,
provisions a pinned Packer release and runs builds against a source's
template with forwarded variables and platform filters.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
