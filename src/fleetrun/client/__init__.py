"""Client layer: HTTP transport and the resilient remote-operation client."""

from .endpoints import BULK_RUNS, bulk_run_url
from .remote import RemoteOperationClient, decode_json
from .transport import HttpTransport, default_headers

__all__ = [
    "BULK_RUNS",
    "bulk_run_url",
    "HttpTransport",
    "default_headers",
    "RemoteOperationClient",
    "decode_json",
]
