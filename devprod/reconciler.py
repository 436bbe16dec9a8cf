import logging

from .exceptions import ContractViolation
from .fingerprint import compute_fingerprint, is_outdated
from .models import (
    Action,
    Catalogue,
    Classification,
    Entry,
    EntryFailure,
    Failure,
    FailureKind,
    FingerprintReport,
    Mismatch,
    OutdatedPreview,
    RemoteDetails,
    Success,
    SyncFlags,
    SyncReport,
)

logger = logging.getLogger(__name__)


def classify_entry(entry: Entry, flags: SyncFlags) -> tuple[Action, bool]:
    """Return the sync action for one entry and whether it counts as outdated."""
    if entry.remote_id is None:
        return (Action.CREATE if flags.create else Action.SKIP_CREATE), False

    if is_outdated(entry):
        if flags.update or flags.update_all:
            return Action.UPDATE, True
        return Action.SKIP_UPDATE, True

    if flags.update_all:
        return Action.UPDATE, False
    return Action.SKIP_UPDATE, False


def classify(catalogue: Catalogue, flags: SyncFlags) -> Classification:
    """
    Sort every entry of the catalogue into create/update/skip buckets.

    Pure function of the catalogue state and flags; nothing is cached and
    nothing is mutated.
    """
    result = Classification()
    buckets = {
        Action.CREATE: result.to_create,
        Action.SKIP_CREATE: result.to_skip_create,
        Action.UPDATE: result.to_update,
        Action.SKIP_UPDATE: result.to_skip_update,
    }
    for entry in catalogue.entries():
        action, outdated = classify_entry(entry, flags)
        if outdated:
            result.outdated.append(entry)
        buckets[action].append(entry)
        result.plan.append((entry, action))
    return result


def _apply(client, universe_id: int, entry: Entry, action: Action):
    if action is Action.CREATE:
        return client.create(universe_id, entry)
    if entry.is_product:
        return client.update_product(universe_id, entry)
    return client.update_pass(entry)


def _verify(client, entry: Entry, report: SyncReport):
    """Compare what Roblox stored with what was sent; never undoes the write."""
    try:
        details = client.fetch_details(entry)
    except Exception as exc:
        details = Failure(FailureKind.UNEXPECTED, -1, f"Unknown error: {exc}")

    if isinstance(details, Failure):
        logger.warning("Could not verify %s: %s", entry, details.message)
        report.verify_failed.append(EntryFailure(entry, details))
        return

    report.verified.append(entry)
    for field, expected, actual in _compared_fields(entry, details):
        if expected != actual:
            logger.warning(
                "%s was stored with a different %s: sent %r, got %r.", entry, field, expected, actual,
            )
            report.verify_mismatches.append(Mismatch(entry, field, expected, actual))


def _compared_fields(entry: Entry, details: RemoteDetails):
    # Roblox reports an empty description as "" and an off-sale price as null or 0.
    return [
        ('name', entry.name, details.name),
        ('description', entry.description or '', details.description or ''),
        ('price', entry.price or 0, details.price or 0),
    ]


def reconcile(catalogue: Catalogue, flags: SyncFlags, client) -> SyncReport:
    """
    Create or update every entry that needs it, one at a time in collection order.

    Successful writes assign the new remote id (create only) and store the
    entry's fingerprint as computed after that assignment. A failed entry
    keeps its previous state and never stops the remaining entries.
    """
    classification = classify(catalogue, flags)
    report = SyncReport(
        skipped_create=list(classification.to_skip_create),
        skipped_update=list(classification.to_skip_update),
        outdated=list(classification.outdated),
    )

    for entry, action in classification.plan:
        if action not in (Action.CREATE, Action.UPDATE):
            continue
        failures = report.create_failed if action is Action.CREATE else report.update_failed

        try:
            result = _apply(client, catalogue.universe_id, entry, action)
        except ContractViolation as exc:
            result = Failure(FailureKind.CONTRACT, -1, str(exc))
        except Exception as exc:
            result = Failure(FailureKind.UNEXPECTED, -1, f"Unknown error: {exc}")

        if isinstance(result, Failure):
            logger.error("Failed to %s %s: %s", action.value, entry, result.message)
            failures.append(EntryFailure(entry, result))
            continue

        if action is Action.CREATE:
            entry.remote_id = result.remote_id
            report.created.append(entry)
        else:
            report.updated.append(entry)
        entry.stored_fingerprint = compute_fingerprint(entry)
        logger.info("%s %s successfully.", entry, 'created' if action is Action.CREATE else 'updated')

        if flags.verify:
            _verify(client, entry, report)

    logger.info("Reconciliation complete: %s", report.summary())
    return report


def preview_fingerprints(catalogue: Catalogue) -> FingerprintReport:
    """Report which remote entries would get a new fingerprint, without changing any."""
    report = FingerprintReport()
    for entry in catalogue.entries():
        if entry.remote_id is None:
            continue
        report.total += 1
        if compute_fingerprint(entry) != entry.stored_fingerprint:
            report.updated.append(entry)
        else:
            report.unchanged.append(entry)
    return report


def recompute_fingerprints(catalogue: Catalogue) -> FingerprintReport:
    """Accept the current local state of every remote entry as its new baseline."""
    report = preview_fingerprints(catalogue)
    for entry in report.updated:
        entry.stored_fingerprint = compute_fingerprint(entry)
    logger.info(
        "Fingerprints refreshed: %d of %d remote entries changed.", len(report.updated), report.total,
    )
    return report


def preview_outdated(catalogue: Catalogue) -> OutdatedPreview:
    preview = OutdatedPreview()
    for entry in catalogue.entries():
        if entry.remote_id is None:
            continue
        if is_outdated(entry):
            preview.outdated.append(entry)
        else:
            preview.up_to_date.append(entry)
    return preview
