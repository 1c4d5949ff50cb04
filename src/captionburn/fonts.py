"""
Immutable font registry used to resolve caller font keys to font files.
"""

import logging
import os
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from .models import FontEntry

logger = logging.getLogger("captionburn")

DEFAULT_FONT_KEY = "Roboto"

# key -> (family, file name under the fonts dir); absolute paths are used as-is.
_BUNDLED_FONTS = {
    "Roboto": ("Roboto", "Roboto-Regular.ttf"),
    "Lato": ("Lato", "Lato-Regular.ttf"),
    "DejaVu Sans": ("DejaVu Sans", "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    "Open Sans": ("Open Sans", "OpenSans-Regular.ttf"),
    "Montserrat": ("Montserrat", "Montserrat-Regular.ttf"),
    "Source Sans Pro": ("Source Sans Pro", "SourceSansPro-Regular.ttf"),
    "PT Sans": ("PT Sans", "PTSans-Regular.ttf"),
    "Oswald": ("Oswald", "Oswald-Regular.ttf"),
    "Merriweather": ("Merriweather", "Merriweather-Regular.ttf"),
    "Playfair Display": ("Playfair Display", "PlayfairDisplay-Regular.ttf"),
    "Nunito": ("Nunito", "Nunito-Regular.ttf"),
    "Raleway": ("Raleway", "Raleway-Regular.ttf"),
    "Poppins": ("Poppins", "Poppins-Regular.ttf"),
    "Ubuntu": ("Ubuntu", "Ubuntu-Regular.ttf"),
    "Noto Sans": ("Noto Sans", "NotoSans-Regular.ttf"),
    "Rubik": ("Rubik", "Rubik-Regular.ttf"),
    "Work Sans": ("Work Sans", "WorkSans-Regular.ttf"),
    "Lobster": ("Lobster", "Lobster-Regular.ttf"),
    "Pacifico": ("Pacifico", "Pacifico-Regular.ttf"),
    "Caveat": ("Caveat", "Caveat-Regular.ttf"),
    "Indie Flower": ("Indie Flower", "IndieFlower-Regular.ttf"),
    "Zilla Slab": ("Zilla Slab", "ZillaSlab-Regular.ttf"),
    "Arvo": ("Arvo", "Arvo-Regular.ttf"),
}


class FontRegistry(Mapping):
    """Read-only key -> FontEntry table with a guaranteed default."""

    def __init__(self, entries: Mapping[str, FontEntry], default_key: str = DEFAULT_FONT_KEY):
        if default_key not in entries:
            raise ValueError(f"default font {default_key!r} is not in the registry")
        self._entries = MappingProxyType(dict(entries))
        self.default_key = default_key

    def __getitem__(self, key: str) -> FontEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def default(self) -> FontEntry:
        return self._entries[self.default_key]

    def resolve_key(self, key: str | None) -> str:
        """Registered key for ``key``, or the default key."""
        if key and key in self._entries:
            return key
        if key:
            logger.info("Unknown font %r, falling back to %s", key, self.default_key)
        return self.default_key

    def resolve(self, key: str | None) -> FontEntry:
        return self._entries[self.resolve_key(key)]


def default_font_registry(fonts_dir: str, default_key: str = DEFAULT_FONT_KEY) -> FontRegistry:
    """The stock font table, with relative files rooted at ``fonts_dir``."""
    entries = {
        key: FontEntry(family=family, path=os.path.join(os.path.abspath(fonts_dir), name))
        for key, (family, name) in _BUNDLED_FONTS.items()
    }
    if default_key not in entries:
        logger.warning("Configured default font %r unknown, using %s", default_key, DEFAULT_FONT_KEY)
        default_key = DEFAULT_FONT_KEY
    return FontRegistry(entries, default_key)
