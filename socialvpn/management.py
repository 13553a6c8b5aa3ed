"""
Management request parsing.

Requests arrive as url-encoded forms:

    m=add&uids=bob@x.org%0Acarol@y.org
    m=addfpr&fprs=svpn:3F2A...
    m=allow&fprs=svpn:3F2A...%0Asvpn:91C0...
    m=block&fprs=svpn:3F2A...
    m=login&backend=static&user=alice&pass=secret

List parameters are newline-delimited.
"""

from typing import Any, Dict, List
from urllib.parse import parse_qs

LIST_FIELDS = ("uids", "fprs")
SCALAR_FIELDS = ("m", "user", "pass", "backend")


def split_lines(value: str) -> List[str]:
    """Split a newline-delimited list, dropping blanks and whitespace."""
    return [line.strip() for line in value.splitlines() if line.strip()]


def parse_request(body: str) -> Dict[str, Any]:
    """
    Parse a url-encoded management request.

    Args:
        body: Form body

    Returns:
        Dict with "m", list fields as lists, scalar fields as strings
    """
    form = parse_qs(body, keep_blank_values=True)
    return normalize_request({key: values[-1] for key, values in form.items()})


def normalize_request(form: Dict[str, str]) -> Dict[str, Any]:
    """Convert raw form fields into a management request."""
    request: Dict[str, Any] = {}
    for key in SCALAR_FIELDS:
        if key in form:
            request[key] = form[key]
    for key in LIST_FIELDS:
        if key in form:
            request[key] = split_lines(form[key])
    return request
