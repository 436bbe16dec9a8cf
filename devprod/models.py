from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class EntryKind(str, Enum):
    PRODUCT = 'product'
    PASS = 'pass'


@dataclass(eq=False)
class Entry:
    """
    One configured developer product or game pass.

    `remote_id` is present only once the entry exists on Roblox;
    `stored_fingerprint` is the fingerprint as of the last successful write.
    """
    name: str
    kind: EntryKind = EntryKind.PRODUCT
    description: Optional[str] = None
    price: Optional[int] = None
    image_id: Optional[int] = None
    remote_id: Optional[int] = None
    stored_fingerprint: Optional[str] = None

    @property
    def is_product(self) -> bool:
        return self.kind is EntryKind.PRODUCT

    def __str__(self):
        return f"{self.kind.value} {self.name!r} (id={self.remote_id})"


@dataclass
class Catalogue:
    universe_id: int
    products: list[Entry] = field(default_factory=list)
    passes: list[Entry] = field(default_factory=list)

    def entries(self) -> list[Entry]:
        """All entries in collection order: products first, then passes."""
        return [*self.products, *self.passes]


@dataclass(frozen=True)
class SyncFlags:
    create: bool = False
    update: bool = False
    update_all: bool = False
    verify: bool = False


class Action(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'
    SKIP_CREATE = 'skip_create'
    SKIP_UPDATE = 'skip_update'


@dataclass
class Classification:
    to_create: list[Entry] = field(default_factory=list)
    to_skip_create: list[Entry] = field(default_factory=list)
    outdated: list[Entry] = field(default_factory=list)
    to_update: list[Entry] = field(default_factory=list)
    to_skip_update: list[Entry] = field(default_factory=list)
    # (entry, action) in collection order
    plan: list[tuple[Entry, Action]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Adapter results
# ---------------------------------------------------------------------------

class FailureKind(str, Enum):
    DUPLICATE_NAME = 'duplicate_name'
    VALIDATION = 'validation'
    UNKNOWN_RESPONSE = 'unknown_response'
    MISSING_RESULT = 'missing_result'
    TRANSPORT = 'transport'
    UNSUPPORTED = 'unsupported'
    CONTRACT = 'contract'
    UNEXPECTED = 'unexpected'


@dataclass(frozen=True)
class Success:
    remote_id: int


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    code: int
    message: str

    def __str__(self):
        return self.message


# create and both updates share the same tagged shape
RemoteResult = Union[Success, Failure]


@dataclass(frozen=True)
class RemoteDetails:
    """Authoritative remote state of an entry, as fetched for verification."""
    name: Optional[str]
    description: Optional[str]
    price: Optional[int]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@dataclass
class EntryFailure:
    entry: Entry
    error: Failure


@dataclass
class Mismatch:
    entry: Entry
    field: str
    expected: object
    actual: object


@dataclass
class SyncReport:
    created: list[Entry] = field(default_factory=list)
    create_failed: list[EntryFailure] = field(default_factory=list)
    skipped_create: list[Entry] = field(default_factory=list)
    updated: list[Entry] = field(default_factory=list)
    update_failed: list[EntryFailure] = field(default_factory=list)
    skipped_update: list[Entry] = field(default_factory=list)
    outdated: list[Entry] = field(default_factory=list)
    verified: list[Entry] = field(default_factory=list)
    verify_mismatches: list[Mismatch] = field(default_factory=list)
    verify_failed: list[EntryFailure] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            'created': len(self.created),
            'create_failed': len(self.create_failed),
            'skipped_create': len(self.skipped_create),
            'updated': len(self.updated),
            'update_failed': len(self.update_failed),
            'skipped_update': len(self.skipped_update),
            'outdated': len(self.outdated),
            'verified': len(self.verified),
            'verify_mismatches': len(self.verify_mismatches),
            'verify_failed': len(self.verify_failed),
        }


@dataclass
class FingerprintReport:
    total: int = 0
    updated: list[Entry] = field(default_factory=list)
    unchanged: list[Entry] = field(default_factory=list)


@dataclass
class OutdatedPreview:
    outdated: list[Entry] = field(default_factory=list)
    up_to_date: list[Entry] = field(default_factory=list)
