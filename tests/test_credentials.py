"""Tests for credential injection, stripping and scrubbing."""

import pytest

from style_proxy.config import Settings
from style_proxy.credentials import (
    Credential,
    CredentialStore,
    Provider,
    scrub_text,
    strip_credentials,
)

SECRET = "abc123secret"


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore.from_settings(
        Settings(_env_file=None, maptiler_api_key=SECRET, clockwork_api_key="cw-secret")
    )


class TestStripCredentials:
    """Tests for strip_credentials."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://a.example/s.json?key=x", "https://a.example/s.json"),
            ("https://a.example/s.json?key=x&lang=de", "https://a.example/s.json?lang=de"),
            ("https://a.example/s.json?lang=de&key=x", "https://a.example/s.json?lang=de"),
            ("https://a.example/s.json?a=1&apikey=x&b=2", "https://a.example/s.json?a=1&b=2"),
            ("https://a.example/s.json?API_KEY=x&Token=y", "https://a.example/s.json"),
            ("https://a.example/s.json?x-api-key=x", "https://a.example/s.json"),
            ("https://a.example/s.json?&&key=x&", "https://a.example/s.json"),
            ("https://a.example/s.json?key=x#frag", "https://a.example/s.json#frag"),
            ("https://a.example/s.json", "https://a.example/s.json"),
        ],
    )
    def test_removes_credential_params(self, url, expected):
        assert strip_credentials(url) == expected

    def test_keeps_template_placeholders(self):
        url = "https://a.example/tiles/{z}/{x}/{y}.pbf?key=x"
        assert strip_credentials(url) == "https://a.example/tiles/{z}/{x}/{y}.pbf"

    def test_does_not_match_param_prefixes(self):
        url = "https://a.example/s.json?keyword=roads&tokens=3"
        assert strip_credentials(url) == url


class TestInject:
    """Tests for CredentialStore.inject."""

    def test_uses_question_mark_without_query(self, store):
        cred = store.credential_for(Provider.MAPTILER)
        assert store.inject("https://a.example/s.json", cred) == f"https://a.example/s.json?key={SECRET}"

    def test_uses_ampersand_with_query(self, store):
        cred = store.credential_for(Provider.MAPTILER)
        assert store.inject("https://a.example/s.json?lang=de", cred) == (
            f"https://a.example/s.json?lang=de&key={SECRET}"
        )

    def test_replaces_existing_param(self, store):
        cred = store.credential_for(Provider.MAPTILER)
        injected = store.inject("https://a.example/s.json?key=old&lang=de", cred)
        assert injected == f"https://a.example/s.json?lang=de&key={SECRET}"

    def test_keeps_fragment_last(self, store):
        cred = store.credential_for(Provider.MAPTILER)
        assert store.inject("https://a.example/s.json#top", cred) == f"https://a.example/s.json?key={SECRET}#top"

    def test_uses_provider_param_name(self, store):
        url = store.inject_for("https://cw.example/style", Provider.CLOCKWORK)
        assert url == "https://cw.example/style?x-api-key=cw-secret"

    def test_secret_is_url_encoded(self):
        store = CredentialStore({Provider.BEV: Credential(Provider.BEV, "a&b=c", "key")})
        assert store.inject_for("https://b.example/s", Provider.BEV) == "https://b.example/s?key=a%26b%3Dc"

    @pytest.mark.parametrize(
        "url",
        [
            "https://a.example/s.json",
            "https://a.example/s.json?lang=de",
            "https://a.example/tiles/{z}/{x}/{y}.pbf?key=stale",
            "https://a.example/s.json?KEY=upper&token=t",
        ],
    )
    def test_inject_strip_inject_has_single_param(self, store, url):
        cred = store.credential_for(Provider.MAPTILER)
        injected = store.inject(url, cred)
        again = store.inject(store.strip(injected), cred)
        assert again.count("key=") == 1
        assert again.count(SECRET) == 1
        assert store.inject(injected, cred).count("key=") == 1

    def test_missing_credential_leaves_url_unchanged(self, store):
        assert store.credential_for(Provider.BEV) is None
        url = "https://b.example/style.json?lang=de"
        assert store.inject_for(url, Provider.BEV) == url
        assert store.inject_for(url, Provider.BASEMAP_DE) == url

    def test_no_provider_has_no_credential(self, store):
        assert store.credential_for(None) is None


class TestCredentialStore:
    """Tests for settings loading and text scrubbing."""

    def test_only_configured_keys_become_credentials(self, store):
        assert store.credential_for(Provider.MAPTILER).secret == SECRET
        assert store.credential_for(Provider.LINZ) is None
        assert sorted(store.secrets) == sorted([SECRET, "cw-secret"])

    def test_param_names_include_provider_params(self, store):
        assert {"key", "token", "x-api-key", "api"} <= store.param_names

    def test_repr_hides_secret(self, store):
        assert SECRET not in repr(store.credential_for(Provider.MAPTILER))

    def test_scrub_text_inside_html(self):
        html = '<a href="https://a.example/c?key=zzz&lang=de">A</a> <a href="https://b.example/?token=t">B</a>'
        assert scrub_text(html) == '<a href="https://a.example/c?lang=de">A</a> <a href="https://b.example/">B</a>'

    def test_scrub_removes_secret_literals(self, store):
        assert SECRET not in store.scrub(f"key is {SECRET} and path /{SECRET}/x")


class TestNationalProviders:
    """Tests for the IGN, Ordnance Survey and LINZ key parameters."""

    @pytest.fixture
    def national(self) -> CredentialStore:
        return CredentialStore.from_settings(
            Settings(_env_file=None, ign_api_key="ign-secret", osgb_api_key="os-secret", linz_api_key="nz-secret")
        )

    def test_ign_uses_apikey(self, national):
        url = national.inject_for("https://data.geopf.fr/tms/1.0.0/PLAN.IGN/5/10/12.pbf", Provider.IGN)
        assert url == "https://data.geopf.fr/tms/1.0.0/PLAN.IGN/5/10/12.pbf?apikey=ign-secret"

    def test_osgb_uses_key_after_existing_query(self, national):
        url = national.inject_for("https://api.os.uk/maps/vector/v1/vts/tile/5/12/10.pbf?srs=3857", Provider.OSGB)
        assert url == "https://api.os.uk/maps/vector/v1/vts/tile/5/12/10.pbf?srs=3857&key=os-secret"

    def test_linz_uses_api(self, national):
        url = national.inject_for("https://basemaps.linz.govt.nz/v1/tiles/t/1/0/0.pbf", Provider.LINZ)
        assert url == "https://basemaps.linz.govt.nz/v1/tiles/t/1/0/0.pbf?api=nz-secret"

    def test_keys_are_stripped(self, national):
        url = "https://data.geopf.fr/s.json?apikey=ign-secret&lang=fr&api=nz-secret"
        assert national.strip(url) == "https://data.geopf.fr/s.json?lang=fr"
        assert sorted(national.secrets) == ["ign-secret", "nz-secret", "os-secret"]
