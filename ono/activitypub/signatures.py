# ono/activitypub/signatures.py
"""
HTTP Signatures for ActivityPub requests.

Outbound requests are signed over:

    (request-target): post /inbox
    host: remote.example
    date: Tue, 07 Jun 2022 20:51:35 GMT
    digest: SHA-256=<base64 sha256 of body>     (only when there is a body)

with RSA-SHA256 (PKCS#1 v1.5), and carry a header like:

    Signature: keyId="https://me.example/u/alice#main-key",
               headers="(request-target) host date digest",
               signature="<base64>"

Inbound verification rebuilds the same string from the request's own
headers and the path the request was actually delivered to.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from email.utils import formatdate
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ..errors import SignatureError
from .actor import Actor

logger = logging.getLogger(__name__)

REQUEST_TARGET = "(request-target)"


def http_date(timestamp: Optional[float] = None) -> str:
    """RFC 1123 date, as used in the Date header."""
    return formatdate(timeval=timestamp, localtime=False, usegmt=True)


def body_digest(body: bytes) -> str:
    """Digest header value for an exact serialized body."""
    digest = base64.b64encode(hashlib.sha256(body).digest()).decode("utf-8")
    return f"SHA-256={digest}"


def request_path(url: str) -> str:
    """Path plus query string of a URL, as it appears in (request-target)."""
    parsed = urlparse(url)
    path = parsed.path or "/"
    if parsed.query:
        path += f"?{parsed.query}"
    return path


def build_signature_string(
    method: str,
    path: str,
    fields: List[str],
    headers: Mapping[str, str],
) -> str:
    """
    Canonical string for the given signed fields.

    Args:
        method: HTTP method
        path: Request path (and query) for (request-target)
        fields: Header names in signing order
        headers: Header values, keyed by lowercase name
    """
    lines = []
    for name in fields:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {path}")
        else:
            value = headers.get(name)
            if value is None:
                raise SignatureError(f"Signed header missing from request: {name}")
            lines.append(f"{name}: {value}")
    return "\n".join(lines)


@dataclass
class SignedHeaders:
    """Headers produced by sign_request()."""
    host: str
    date: str
    signature: str
    digest: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        headers = {
            "Host": self.host,
            "Date": self.date,
            "Signature": self.signature,
        }
        if self.digest:
            headers["Digest"] = self.digest
        return headers


def sign_request(
    method: str,
    url: str,
    private_key_pem: bytes,
    key_id: str,
    body: Optional[bytes] = None,
    date: Optional[str] = None,
) -> SignedHeaders:
    """
    Sign a request with the account's private key.

    Args:
        method: HTTP method
        url: Full target URL
        private_key_pem: PEM-encoded RSA private key
        key_id: Public key id advertised on the actor
        body: Exact request body, when there is one
        date: Date header value (defaults to now)

    Returns:
        SignedHeaders to send with the request
    """
    parsed = urlparse(url)
    host = parsed.hostname or ""
    date = date or http_date()
    values = {"host": host, "date": date}
    fields = [REQUEST_TARGET, "host", "date"]

    digest = None
    if body is not None:
        digest = body_digest(body)
        values["digest"] = digest
        fields.append("digest")

    to_sign = build_signature_string(method, request_path(url), fields, values)

    try:
        private_key = serialization.load_pem_private_key(private_key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise SignatureError(f"Unusable private key: {e}")

    signature_bytes = private_key.sign(
        to_sign.encode("utf-8"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    signature_value = base64.b64encode(signature_bytes).decode("utf-8")

    header = f'keyId="{key_id}",headers="{" ".join(fields)}",signature="{signature_value}"'
    return SignedHeaders(host=host, date=date, signature=header, digest=digest)


def parse_signature_header(value: str) -> Dict[str, str]:
    """
    Split a Signature header into its parameters.

    Values are unquoted; base64 padding ("=") inside a value is kept.
    """
    params = {}
    for part in value.split(","):
        if "=" not in part:
            raise SignatureError(f"Malformed signature parameter: {part!r}")
        key, val = part.split("=", 1)
        val = val.strip()
        if len(val) >= 2 and val.startswith('"') and val.endswith('"'):
            val = val[1:-1]
        params[key.strip()] = val
    return params


def verify_request(
    actor: Optional[Actor],
    headers: Mapping[str, str],
    path: str,
    method: str = "post",
) -> bool:
    """
    Verify the signature on an inbound request.

    Args:
        actor: The purported sender (None if it could not be resolved)
        headers: Request headers (any case)
        path: The path the request was delivered to
        method: HTTP method of the request

    Returns:
        True if the signature is valid. Never raises.
    """
    if actor is None or not actor.public_key_pem:
        return False

    try:
        lowered = {k.lower(): v for k, v in headers.items()}
        params = parse_signature_header(lowered["signature"])
        fields = params.get("headers", "date").split()
        to_verify = build_signature_string(method, path, fields, lowered)

        public_key = serialization.load_pem_public_key(actor.public_key_pem.encode("utf-8"))
        public_key.verify(
            base64.b64decode(params["signature"]),
            to_verify.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, UnsupportedAlgorithm, SignatureError, KeyError, ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Signature check failed for {actor.id}: {e}")
        return False

    return True


def verify_digest(headers: Mapping[str, str], body: bytes) -> bool:
    """Check a Digest header against the raw request body."""
    lowered = {k.lower(): v for k, v in headers.items()}
    digest = lowered.get("digest")
    if digest is None:
        return True
    return digest == body_digest(body)
