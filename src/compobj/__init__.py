"""compobj: declarative configuration-compliance objects."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("compobj")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
