"""Message catalog for user-facing texts.

Catalogs are YAML documents keyed by locale, each locale mapping the English
source text to its translation::

    nl:
      "Event not found. iCalUId: ": "Afspraak niet gevonden. iCalUId: "

A Translator is loaded once at startup and is read-only afterwards.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).resolve().parent.parent / "translations.yaml"


class Translator:
    """Looks up localized texts, falling back to the source text."""

    def __init__(self, messages: Optional[Mapping[str, str]] = None, locale: str = "en"):
        self.locale = locale
        self._messages = MappingProxyType(dict(messages or {}))

    def __call__(self, text: str) -> str:
        return self._messages.get(text, text)

    @property
    def messages(self) -> Mapping[str, str]:
        return self._messages

    @classmethod
    def from_yaml(cls, path: Path = DEFAULT_CATALOG, locale: str = "en") -> "Translator":
        """
        Load the catalog for one locale from a YAML file.

        Args:
            path: Catalog file
            locale: Locale key inside the catalog

        Returns:
            Translator for the requested locale (empty when the locale is absent)

        Raises:
            ConfigurationError: If the file cannot be read or is not a mapping
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load translations from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Translations file {path} must contain a mapping")

        messages = data.get(locale)
        if messages is None:
            logger.warning(f"No translations for locale '{locale}' in {path}")
            messages = {}
        return cls(messages, locale=locale)


# Identity translator used when callers do not inject one
NULL_TRANSLATOR = Translator()
