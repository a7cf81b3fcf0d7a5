# tests/test_signatures.py
"""Tests for HTTP signatures."""

import pytest

from ono.activitypub.signatures import (
    body_digest,
    build_signature_string,
    http_date,
    parse_signature_header,
    request_path,
    sign_request,
    verify_digest,
    verify_request,
)
from ono.errors import SignatureError

INBOX = "https://local.example/api/inbox"


@pytest.fixture
def sender(bob):
    return bob.to_actor()


def signed(bob, body=b'{"type": "Like"}', url=INBOX, date=None):
    headers = sign_request("post", url, bob.private_key, bob.key_id, body=body, date=date).as_dict()
    return headers


class TestHelpers:
    """Tests for the canonical string pieces."""

    def test_request_path_keeps_query(self):
        assert request_path("https://a.example/outbox?page=2") == "/outbox?page=2"
        assert request_path("https://a.example") == "/"

    def test_body_digest(self):
        assert body_digest(b"") == "SHA-256=47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    def test_http_date_format(self):
        assert http_date(0) == "Thu, 01 Jan 1970 00:00:00 GMT"

    def test_signature_string(self):
        result = build_signature_string(
            "POST",
            "/api/inbox",
            ["(request-target)", "host", "date", "digest"],
            {"host": "local.example", "date": "D", "digest": "SHA-256=x"},
        )
        assert result == (
            "(request-target): post /api/inbox\n"
            "host: local.example\n"
            "date: D\n"
            "digest: SHA-256=x"
        )

    def test_signature_string_missing_header(self):
        with pytest.raises(SignatureError):
            build_signature_string("get", "/", ["date"], {})


class TestSignRequest:
    """Tests for sign_request."""

    def test_header_shape(self, bob):
        headers = signed(bob)
        params = parse_signature_header(headers["Signature"])
        assert params["keyId"] == bob.key_id
        assert params["headers"] == "(request-target) host date digest"
        assert headers["Host"] == "local.example"
        assert headers["Digest"] == body_digest(b'{"type": "Like"}')

    def test_get_has_no_digest(self, bob):
        headers = sign_request("get", "https://bob.example/u/bob", bob.private_key, bob.key_id).as_dict()
        assert "Digest" not in headers
        assert parse_signature_header(headers["Signature"])["headers"] == "(request-target) host date"

    def test_unusable_key(self, bob):
        with pytest.raises(SignatureError):
            sign_request("get", INBOX, b"not a key", bob.key_id)


class TestVerifyRequest:
    """Tests for verify_request."""

    def test_round_trip(self, bob, sender):
        assert verify_request(sender, signed(bob), "/api/inbox") is True

    def test_header_names_case_insensitive(self, bob, sender):
        headers = {k.lower(): v for k, v in signed(bob).items()}
        assert verify_request(sender, headers, "/api/inbox") is True

    def test_tampered_date_fails(self, bob, sender):
        headers = signed(bob)
        headers["Date"] = http_date(0)
        assert verify_request(sender, headers, "/api/inbox") is False

    def test_other_path_fails(self, bob, sender):
        assert verify_request(sender, signed(bob), "/api/outbox") is False

    def test_tampered_digest_fails(self, bob, sender):
        headers = signed(bob)
        headers["Digest"] = body_digest(b"something else")
        assert verify_request(sender, headers, "/api/inbox") is False

    def test_wrong_key_fails(self, bob, carol):
        assert verify_request(carol.to_actor(), signed(bob), "/api/inbox") is False

    def test_unresolved_actor_fails(self, bob):
        assert verify_request(None, signed(bob), "/api/inbox") is False

    def test_missing_signature_fails(self, bob, sender):
        headers = signed(bob)
        del headers["Signature"]
        assert verify_request(sender, headers, "/api/inbox") is False

    @pytest.mark.parametrize("value", [
        "garbage",
        'keyId="x",headers="date"',
        'keyId="x",headers="date",signature="!!!not base64"',
        'keyId="x",headers="(request-target) host date nonexistent",signature="AAAA"',
    ])
    def test_malformed_signature_fails(self, bob, sender, value):
        headers = signed(bob)
        headers["Signature"] = value
        assert verify_request(sender, headers, "/api/inbox") is False


class TestVerifyDigest:
    """Tests for verify_digest."""

    def test_matching_body(self, bob):
        assert verify_digest(signed(bob, body=b"abc"), b"abc") is True

    def test_changed_body(self, bob):
        assert verify_digest(signed(bob, body=b"abc"), b"abd") is False

    def test_no_digest_header(self):
        assert verify_digest({"Date": "x"}, b"abc") is True
