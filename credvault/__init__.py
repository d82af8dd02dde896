"""credvault - Git credential helper for personal access tokens over HTTPS."""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__ = _pkg_version("credvault")
except PackageNotFoundError:
    # Not installed, e.g. running from a source checkout
    __version__ = "0.1.0"
