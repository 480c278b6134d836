"""Provider credentials and the URL-level injection/stripping of API keys.

These are the only functions that read or write provider secrets. Every
other module goes through ``CredentialStore.inject`` and
``strip_credentials``.
"""

import logging
import re
from enum import Enum
from typing import NamedTuple
from urllib.parse import quote

from style_proxy.config import Settings

logger = logging.getLogger(__name__)

# Query parameter names treated as credentials wherever they appear
CREDENTIAL_PARAMS = frozenset({"key", "apikey", "api_key", "token", "x-api-key"})


class Provider(str, Enum):
    """Upstream provider tag attached to each registered style."""

    MAPTILER = "maptiler"
    CLOCKWORK = "clockwork"
    BEV = "bev"
    BASEMAP_DE = "basemap.de"
    LINZ = "linz"
    IGN = "ign"
    OSGB = "osgb"


class Credential(NamedTuple):
    """A provider secret and the query parameter it travels in."""

    provider: Provider
    secret: str
    param: str

    def __repr__(self) -> str:
        return f"Credential(provider={self.provider.value!r}, param={self.param!r})"


# Provider -> (settings attribute, query parameter). Providers absent here need no key.
PROVIDER_KEY_PARAMS: dict[Provider, tuple[str, str]] = {
    Provider.MAPTILER: ("maptiler_api_key", "key"),
    Provider.CLOCKWORK: ("clockwork_api_key", "x-api-key"),
    Provider.BEV: ("bev_api_key", "key"),
    Provider.LINZ: ("linz_api_key", "api"),
    Provider.IGN: ("ign_api_key", "apikey"),
    Provider.OSGB: ("osgb_api_key", "key"),
}


def strip_credentials(url: str, names: frozenset[str] | set[str] = CREDENTIAL_PARAMS) -> str:
    """Remove credential-like query parameters from a URL.

    Parameter names are matched case-insensitively. Empty pairs left by the
    removal are dropped, and a bare trailing ``?`` disappears.

    Args:
        url: URL or URL template (placeholders like ``{z}`` are left untouched)
        names: Lower-case parameter names to remove

    Returns:
        The URL without any matching parameter
    """
    base, sep, rest = url.partition("?")
    if not sep:
        return url
    query, hash_sep, fragment = rest.partition("#")
    kept = [
        pair
        for pair in query.split("&")
        if pair and pair.split("=", 1)[0].lower() not in names
    ]
    stripped = base + ("?" + "&".join(kept) if kept else "")
    return stripped + hash_sep + fragment


def _text_pattern(names: frozenset[str] | set[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True))
    return re.compile(r"([?&])(?:" + alternatives + r")=[^&\s<>\"'#]*(&?)", re.IGNORECASE)


def scrub_text(text: str, names: frozenset[str] | set[str] = CREDENTIAL_PARAMS) -> str:
    """Remove credential parameters embedded anywhere in free text.

    Unlike ``strip_credentials`` this works on strings that merely contain
    URLs, such as attribution HTML.
    """

    def replace(match: re.Match[str]) -> str:
        return match.group(1) if match.group(2) else ""

    return _text_pattern(names).sub(replace, text)


class CredentialStore:
    """Static provider -> credential mapping sourced from settings."""

    def __init__(self, credentials: dict[Provider, Credential] | None = None):
        self._credentials = dict(credentials or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialStore":
        credentials = {}
        for provider, (attr, param) in PROVIDER_KEY_PARAMS.items():
            secret = getattr(settings, attr, "")
            if secret:
                credentials[provider] = Credential(provider, secret, param)
            else:
                logger.info("No API key configured for %s, requests go out without one", provider.value)
        return cls(credentials)

    def credential_for(self, provider: Provider | None) -> Credential | None:
        if provider is None:
            return None
        return self._credentials.get(provider)

    @property
    def param_names(self) -> frozenset[str]:
        """Every parameter name that may carry a secret."""
        configured = {param.lower() for _, param in PROVIDER_KEY_PARAMS.values()}
        return CREDENTIAL_PARAMS | configured

    @property
    def secrets(self) -> list[str]:
        return [cred.secret for cred in self._credentials.values()]

    def strip(self, url: str) -> str:
        return strip_credentials(url, self.param_names)

    def scrub(self, text: str) -> str:
        """Remove credential parameters and any configured secret value from text."""
        text = scrub_text(text, self.param_names)
        for secret in self.secrets:
            text = text.replace(secret, "")
        return text

    def inject(self, url: str, credential: Credential | None) -> str:
        """Append ``credential.param=secret`` to a URL.

        Any existing parameter of the same name is removed first, so
        injecting twice never duplicates it. A missing credential returns
        the URL unchanged.
        """
        if credential is None:
            return url
        clean = strip_credentials(url, frozenset({credential.param.lower()}))
        base, hash_sep, fragment = clean.partition("#")
        separator = "&" if "?" in base else "?"
        injected = f"{base}{separator}{credential.param}={quote(credential.secret, safe='')}"
        return injected + hash_sep + fragment

    def inject_for(self, url: str, provider: Provider | None) -> str:
        return self.inject(url, self.credential_for(provider))
