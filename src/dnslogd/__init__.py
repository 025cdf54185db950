"""dnslogd package"""

from importlib import metadata as importlib_metadata

try:
    DNSLOGD_VERSION = importlib_metadata.version("dnslogd")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    DNSLOGD_VERSION = "unknown"

# Re-export the plugins subpackage so dotted paths like 'dnslogd.plugins.*'
# work with tooling that traverses attributes instead of using importlib.
from . import plugins as plugins
