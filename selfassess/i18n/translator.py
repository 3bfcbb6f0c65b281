"""
Translation Provider

Key -> string lookup used for validation messages, error messages and
interpretation text. Tables are loaded from an explicit language -> file
mapping and checked against the default language when loaded.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from selfassess.common.error_handling import InitializationError

logger = logging.getLogger(__name__)

LOCALE_DIR = Path(__file__).parent / "locales"

# Every supported language and the table that backs it
LOCALE_FILES: Dict[str, str] = {
    "en": "en.yaml",
    "zh": "zh.yaml",
}


class _KeepMissing(dict):
    """format_map mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key):
        return "{" + key + "}"


def _flatten(table: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in table.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{full_key}."))
        else:
            flat[full_key] = value
    return flat


class Translator:
    """
    Translation lookup over per-language tables.

    Lookups fall back to the default language, then to the key itself.
    """

    def __init__(self, tables: Mapping[str, Mapping[str, Any]], default_language: str = "en"):
        if default_language not in tables:
            raise InitializationError(
                "translator", f"No translation table for default language {default_language}"
            )
        self.default_language = default_language
        self._tables = {language: _flatten(table) for language, table in tables.items()}

    @classmethod
    def from_locale_files(
        cls,
        languages: Optional[Iterable[str]] = None,
        default_language: str = "en",
        locale_dir: Optional[Path] = None
    ) -> 'Translator':
        """
        Load the tables for ``languages`` from LOCALE_FILES.

        Raises:
            InitializationError: If a language has no registered table or the
                file cannot be read
        """
        locale_dir = Path(locale_dir) if locale_dir else LOCALE_DIR
        languages = list(languages or LOCALE_FILES.keys())
        if default_language not in languages:
            languages.insert(0, default_language)

        tables = {}
        for language in languages:
            filename = LOCALE_FILES.get(language)
            if filename is None:
                raise InitializationError("translator", f"No translation table registered for {language}")
            path = locale_dir / filename
            try:
                with open(path, "r", encoding="utf-8") as f:
                    tables[language] = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise InitializationError("translator", f"Cannot load {path}: {e}", cause=e)

        translator = cls(tables, default_language=default_language)
        translator.validate()
        return translator

    @property
    def languages(self) -> List[str]:
        return list(self._tables.keys())

    def has_language(self, language: str) -> bool:
        return language in self._tables

    def validate(self) -> Dict[str, List[str]]:
        """
        Compare every table with the default one.

        Returns:
            Missing keys per language (empty lists omitted)
        """
        reference = set(self._tables[self.default_language])
        missing: Dict[str, List[str]] = {}
        for language, table in self._tables.items():
            if language == self.default_language:
                continue
            absent = sorted(reference - set(table))
            if absent:
                missing[language] = absent
                logger.warning(
                    f"Translation table '{language}' is missing {len(absent)} keys, e.g. {absent[:3]}"
                )
        return missing

    def lookup(self, key: str, language: Optional[str] = None) -> Any:
        """Raw table value (string or list) or None."""
        language = language or self.default_language
        value = self._tables.get(language, {}).get(key)
        if value is None and language != self.default_language:
            value = self._tables[self.default_language].get(key)
        return value

    def t(self, key: str, params: Optional[Mapping[str, Any]] = None, language: Optional[str] = None) -> str:
        """
        Translate ``key`` and fill ``{name}`` placeholders from ``params``.

        Returns the key itself when no table has it.
        """
        value = self.lookup(key, language)
        if value is None:
            return key
        if not isinstance(value, str):
            value = str(value)
        if params:
            return value.format_map(_KeepMissing({k: v for k, v in params.items()}))
        return value

    def t_list(self, key: str, language: Optional[str] = None) -> List[str]:
        """Translate a key that maps to a list of strings."""
        value = self.lookup(key, language)
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]
