import json
import logging

from .exceptions import ConfigError
from .models import Catalogue, Entry, EntryKind

logger = logging.getLogger(__name__)

# (json key, attribute, expected type, must be non-negative)
_COMMON_FIELDS = [
    ('name', 'name', str, False),
    ('description', 'description', str, False),
    ('price', 'price', int, True),
    ('uploadedHash', 'stored_fingerprint', str, False),
]
_PRODUCT_FIELDS = [('productId', 'remote_id', int, False), *_COMMON_FIELDS, ('imageId', 'image_id', int, True)]
_PASS_FIELDS = [('gamepassId', 'remote_id', int, False), *_COMMON_FIELDS]

_SECTIONS = {
    EntryKind.PRODUCT: ('products', 'product', _PRODUCT_FIELDS),
    EntryKind.PASS: ('gamepasses', 'pass', _PASS_FIELDS),
}


def _matches(value, expected: type) -> bool:
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool):
        return False
    return isinstance(value, expected)


def _parse_entry(raw, kind: EntryKind, index: int) -> Entry:
    _, label, fields = _SECTIONS[kind]
    if not isinstance(raw, dict):
        raise ConfigError(f"Bad {label} {index}: expected an object")
    if kind is EntryKind.PASS and raw.get('imageId') is not None:
        raise ConfigError(f"Bad imageId on {label} {index}: passes have no image")

    values = {}
    for key, attr, expected, non_negative in fields:
        value = raw.get(key)
        if value is None:
            if key == 'name':
                raise ConfigError(f"Bad or missing name on {label} {index}")
            continue
        if not _matches(value, expected) or (non_negative and value < 0):
            raise ConfigError(f"Bad {key} on {label} {index}")
        values[attr] = value
    return Entry(kind=kind, **values)


def parse_catalogue(raw) -> Catalogue:
    """Validate a decoded catalogue document and build a Catalogue from it."""
    if not isinstance(raw, dict):
        raise ConfigError("Catalogue must be an object")
    universe_id = raw.get('universeId')
    if not _matches(universe_id, int):
        raise ConfigError("Bad or missing universeId")

    collections = {}
    for kind, (key, label, _) in _SECTIONS.items():
        items = raw.get(key)
        if items is None:
            items = []
        elif not isinstance(items, list):
            raise ConfigError(f"Bad {key} array")
        entries = []
        seen_names = set()
        for index, item in enumerate(items):
            entry = _parse_entry(item, kind, index)
            if entry.name in seen_names:
                raise ConfigError(f"Duplicate name {entry.name!r} on {label} {index}")
            seen_names.add(entry.name)
            entries.append(entry)
        collections[kind] = entries

    return Catalogue(
        universe_id=universe_id,
        products=collections[EntryKind.PRODUCT],
        passes=collections[EntryKind.PASS],
    )


def dump_catalogue(catalogue: Catalogue) -> dict:
    """Inverse of parse_catalogue; absent fields are omitted."""
    result = {'universeId': catalogue.universe_id}
    for kind, entries in ((EntryKind.PRODUCT, catalogue.products), (EntryKind.PASS, catalogue.passes)):
        key, _, fields = _SECTIONS[kind]
        result[key] = [
            {
                json_key: getattr(entry, attr)
                for json_key, attr, _, _ in fields
                if getattr(entry, attr) is not None
            }
            for entry in entries
        ]
    return result


def load_catalogue(path) -> Catalogue:
    """Load a catalogue JSON file from disk."""
    with open(path, encoding='utf-8') as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    catalogue = parse_catalogue(raw)
    logger.debug(
        "Loaded catalogue for universe %d: %d products, %d passes.",
        catalogue.universe_id, len(catalogue.products), len(catalogue.passes),
    )
    return catalogue


def save_catalogue(path, catalogue: Catalogue):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(dump_catalogue(catalogue), f, indent=4, ensure_ascii=False)
        f.write('\n')
