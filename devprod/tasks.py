import logging

from celery import shared_task
from django.conf import settings

from .catalogue import load_catalogue, save_catalogue
from .models import SyncFlags
from .reconciler import recompute_fingerprints, reconcile
from .roblox_client import RobloxClient

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='devprod.sync_catalogue')
def sync_catalogue_task(self, path=None, create=True, update=True, update_all=False, verify=None):
    """
    Synchronise the local catalogue file with Roblox.

    Steps:
      1. Load and validate the catalogue file.
      2. Classify each entry by remote id and content fingerprint.
      3. Create new entries and update changed ones, one at a time.
      4. Save the file even if some entries failed, so new remote ids
         and fingerprints are never lost.
    """
    path = path or settings.DEVPROD_CATALOGUE_PATH
    if verify is None:
        verify = settings.DEVPROD_VERIFY
    flags = SyncFlags(create=create, update=update, update_all=update_all, verify=verify)
    logger.info("Starting catalogue sync for %s with %s.", path, flags)

    catalogue = load_catalogue(path)
    client = RobloxClient()
    try:
        report = reconcile(catalogue, flags, client)
    finally:
        save_catalogue(path, catalogue)

    summary = report.summary()
    summary['token_retries'] = client.session.retries
    logger.info("Sync complete. %s", summary)
    return summary


@shared_task(bind=True, name='devprod.refresh_fingerprints')
def refresh_fingerprints_task(self, path=None):
    """Mark every remote entry in the catalogue file as up to date."""
    path = path or settings.DEVPROD_CATALOGUE_PATH
    catalogue = load_catalogue(path)
    report = recompute_fingerprints(catalogue)
    save_catalogue(path, catalogue)
    return {
        'total': report.total,
        'updated': len(report.updated),
        'unchanged': len(report.unchanged),
    }
