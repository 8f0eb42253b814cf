"""Deploy Kubernetes manifests to Google Kubernetes Engine clusters."""

from ._version import __version__

__all__ = ["__version__"]
