"""Translation tables and lookup."""

from selfassess.i18n.translator import Translator, LOCALE_FILES

__all__ = ['Translator', 'LOCALE_FILES']
