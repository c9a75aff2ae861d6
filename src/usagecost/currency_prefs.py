from typing import Callable, Iterable, Protocol

import structlog

from usagecost.currency import normalize_currency_code
from usagecost.models import is_real_key_ref

logger = structlog.get_logger()

DEFAULT_PREF_PREFIX = "usage_currency:"


class KeyValueStore(Protocol):
    """
    KeyValueStore is the persistence collaborator for display
    preferences. The core never decides where values live.
    """

    def get(self, key: "str") -> "str | None": ...

    def set(self, key: "str", value: "str") -> "None": ...


class InMemoryKeyValueStore:
    def __init__(self, initial: "dict[str, str] | None" = None) -> "None":
        self._values: "dict[str, str]" = dict(initial or {})

    def get(self, key: "str") -> "str | None":
        return self._values.get(key)

    def set(self, key: "str", value: "str") -> "None":
        self._values[key] = value

    def snapshot(self) -> "dict[str, str]":
        return dict(self._values)


class CurrencyPreferenceStore:
    """
    CurrencyPreferenceStore resolves the display currency a user picked
    for a provider. A preference saved against a real api key ref is
    shared by every provider using that key; otherwise it is stored
    per provider name.
    """

    def __init__(
        self,
        store: "KeyValueStore",
        prefix: "str" = DEFAULT_PREF_PREFIX,
        key_label_for_provider: "Callable[[str], str] | None" = None,
    ) -> "None":
        self._store = store
        self._prefix = prefix
        self._key_label_for_provider = key_label_for_provider or (lambda _: "-")

    def key_for_api_key(self, api_key_ref: "str | None") -> "str | None":
        if not is_real_key_ref(api_key_ref):
            return None
        return f"{self._prefix}key:{(api_key_ref or '').strip()}"

    def key_for_provider(self, provider: "str") -> "str":
        return f"{self._prefix}{provider}"

    def _lookup_keys(
        self, provider: "str", api_key_ref: "str | None"
    ) -> "list[str]":
        keys: "list[str]" = []
        for ref in (api_key_ref, self._key_label_for_provider(provider)):
            key = self.key_for_api_key(ref)
            if key and key not in keys:
                keys.append(key)
        keys.append(self.key_for_provider(provider))
        return keys

    def read(self, provider: "str", api_key_ref: "str | None" = None) -> "str":
        """
        returns the first stored preference, checking the row's key ref,
        then the provider's configured key label, then the provider name.
        Defaults to USD.
        """
        for key in self._lookup_keys(provider, api_key_ref):
            cached = self._store.get(key)
            if cached and cached.strip():
                return normalize_currency_code(cached)
        return "USD"

    def persist(
        self,
        provider_names: "Iterable[str]",
        currency: "str",
        api_key_ref: "str | None" = None,
    ) -> "str":
        """
        writes the normalized code under every key a later read() for
        any of the providers would consult. Returns the stored code.
        """
        normalized = normalize_currency_code(currency)
        keys: "list[str]" = []
        for provider in provider_names:
            for key in self._lookup_keys(provider, api_key_ref):
                if key not in keys:
                    keys.append(key)
        for key in keys:
            self._store.set(key, normalized)
        logger.debug("currency_preference_saved", currency=normalized, keys=len(keys))
        return normalized
