"""
Relying-party context resolution and the origin allow-list.
"""

import pytest

from flask_passkey.errors import OriginNotAllowed, OriginUnresolvable
from flask_passkey.origin import OriginPolicy, RPContext, resolve_rp_context


@pytest.mark.unit
class TestResolveRPContext:

    def test_explicit_origin_used_verbatim(self):
        rp = resolve_rp_context(origin="https://app.example.test", host="ignored.test")
        assert rp == RPContext(origin="https://app.example.test", rp_id="app.example.test")

    def test_trailing_slash_is_dropped(self):
        rp = resolve_rp_context(origin="https://app.example.test/")
        assert rp == RPContext(origin="https://app.example.test", rp_id="app.example.test")

    def test_origin_with_port_uses_hostname_for_rp_id(self):
        rp = resolve_rp_context(origin="http://localhost:5173")
        assert rp.rp_id == "localhost"

    @pytest.mark.parametrize("host, origin", [
        ("localhost:5000", "http://localhost:5000"),
        ("127.0.0.1", "http://127.0.0.1"),
        ("[::1]:8080", "http://[::1]:8080"),
        ("app.example.test", "https://app.example.test"),
        ("app.example.test, proxy.internal", "https://app.example.test"),
    ])
    def test_origin_derived_from_host(self, host, origin):
        assert resolve_rp_context(host=host).origin == origin

    def test_ipv6_loopback_rp_id(self):
        assert resolve_rp_context(host="[::1]:8080").rp_id == "::1"

    def test_default_rp_id_wins_over_hostname(self):
        rp = resolve_rp_context(origin="https://app.example.test", default_rp_id="example.test")
        assert rp.rp_id == "example.test"

    def test_explicit_rp_id_must_cover_hostname(self):
        rp = resolve_rp_context(origin="https://app.example.test", rp_id="Example.Test")
        assert rp.rp_id == "example.test"

        with pytest.raises(OriginNotAllowed):
            resolve_rp_context(origin="https://app.example.test", rp_id="evil.test")

    def test_suffix_must_be_on_label_boundary(self):
        with pytest.raises(OriginNotAllowed):
            resolve_rp_context(origin="https://notexample.test", rp_id="example.test")

    def test_nothing_to_resolve(self):
        with pytest.raises(OriginUnresolvable):
            resolve_rp_context()
        with pytest.raises(OriginUnresolvable):
            resolve_rp_context(origin="   ", host="")

    @pytest.mark.parametrize("origin", ["not a url", "ftp://files.example.test", "https://"])
    def test_unparseable_origin(self, origin):
        with pytest.raises(OriginUnresolvable):
            resolve_rp_context(origin=origin)

    def test_platform_origin_needs_configured_rp_id(self):
        with pytest.raises(OriginUnresolvable):
            resolve_rp_context(origin="android:apk-key-hash:abc", platform_prefixes=("android:",))

        rp = resolve_rp_context(origin="android:apk-key-hash:abc", default_rp_id="example.test",
                                platform_prefixes=("android:",))
        assert rp == RPContext(origin="android:apk-key-hash:abc", rp_id="example.test")


@pytest.mark.security
class TestOriginPolicy:

    def test_allow_listed_origin(self):
        policy = OriginPolicy(["https://app.example.test/"])
        assert policy.check("https://app.example.test") == "https://app.example.test"

    def test_unknown_origin_rejected(self):
        policy = OriginPolicy(["https://app.example.test"])
        with pytest.raises(OriginNotAllowed):
            policy.check("https://evil.test")

    def test_platform_prefix_allowed(self):
        policy = OriginPolicy([], ["android:"])
        assert policy.is_allowed("android:apk-key-hash:abc")
        assert not policy.is_allowed("ios:bundle")

    def test_empty_origin_rejected(self):
        assert not OriginPolicy(["https://app.example.test"]).is_allowed("")
