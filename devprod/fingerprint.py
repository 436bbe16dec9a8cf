import base64
import hashlib
import json

from .models import Entry


def fingerprint_fields(entry: Entry) -> dict:
    """The subset of an entry that affects its remote representation."""
    return {
        'remoteId': entry.remote_id,
        'name': entry.name,
        'description': entry.description,
        'price': entry.price,
        'imageId': entry.image_id,
    }


def compute_fingerprint(entry: Entry) -> str:
    """
    Compute a stable SHA-256 fingerprint of an entry for delta sync.

    Keys are sorted so field order never matters, and absent fields are
    serialised as null so that `price=None` and `price=0` differ.
    """
    serialized = json.dumps(
        fingerprint_fields(entry),
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(serialized.encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii')


def is_outdated(entry: Entry) -> bool:
    """An entry is outdated if it has never been fingerprinted or has changed since."""
    if entry.stored_fingerprint is None:
        return True
    return compute_fingerprint(entry) != entry.stored_fingerprint
