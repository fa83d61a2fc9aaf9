"""HTTP access to the EDC backend."""

from edcprobe.client.http import AuthenticatedClient
from edcprobe.client.normalize import as_list, coerce_int, error_message, first_int, normalize_body, parse_rows

__all__ = [
    "AuthenticatedClient",
    "as_list",
    "coerce_int",
    "error_message",
    "first_int",
    "normalize_body",
    "parse_rows",
]
