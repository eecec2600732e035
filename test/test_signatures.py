"""
Tests for webhook authenticity helpers.
"""

import base64
import hashlib
import hmac

from callhelm.telephony.signatures import (
    compute_twilio_signature,
    ip_in_allowlist,
    verify_twilio_signature,
)


class TestTwilioSignature:
    def test_matches_hmac_sha1_over_url_and_sorted_params(self) -> None:
        url = "https://mycompany.com/myapp.php?foo=1&bar=2"
        params = {"To": "+18005551212", "CallSid": "CA1234567890ABCDE", "Digits": "1234"}
        data = url + "CallSidCA1234567890ABCDE" + "Digits1234" + "To+18005551212"
        expected = base64.b64encode(hmac.new(b"12345", data.encode(), hashlib.sha1).digest()).decode()

        assert compute_twilio_signature("12345", url, params) == expected

    def test_round_trip_and_tamper(self) -> None:
        url = "https://example.com/hook"
        params = {"CallSid": "CA1", "CallStatus": "ringing"}
        signature = compute_twilio_signature("token", url, params)

        assert verify_twilio_signature("token", signature, url, params)
        assert not verify_twilio_signature("token", signature, url + "?x=1", params)
        assert not verify_twilio_signature("other", signature, url, params)
        assert not verify_twilio_signature("", signature, url, params)


class TestAllowlist:
    def test_cidr_and_exact(self) -> None:
        allowed = ["54.172.60.0/23", "10.1.2.3"]

        assert ip_in_allowlist("54.172.61.9", allowed)
        assert ip_in_allowlist("10.1.2.3", allowed)
        assert not ip_in_allowlist("10.1.2.4", allowed)

    def test_bad_inputs(self) -> None:
        assert not ip_in_allowlist(None, ["0.0.0.0/0"])
        assert not ip_in_allowlist("not-an-ip", ["0.0.0.0/0"])
        assert ip_in_allowlist("127.0.0.1", ["bogus", "127.0.0.0/8"])
