import json
from unittest.mock import patch

import pytest
import responses as responses_lib

from devprod.catalogue import load_catalogue
from devprod.fingerprint import compute_fingerprint
from devprod.roblox_client import ADD_PRODUCT_URL, UPDATE_PASS_URL
from devprod.tasks import refresh_fingerprints_task, sync_catalogue_task

UNIVERSE_ID = 1234
UPDATE_URL = f'https://develop.roblox.com/v1/universes/{UNIVERSE_ID}/developerproducts/{{}}/update'

CATALOGUE = {
    'universeId': UNIVERSE_ID,
    'products': [
        {'name': 'Coins', 'description': 'Some coins', 'price': 50},
        {'productId': 24681357, 'name': 'Gems', 'price': 75, 'uploadedHash': 'stale='},
    ],
    'gamepasses': [
        {'gamepassId': 13572468, 'name': 'VIP', 'price': 100},
    ],
}


def confirm_html(product_id):
    return f'<div id="DeveloperProductStatus" class="status-confirm">Product {product_id} created</div>'


@pytest.fixture()
def catalogue_file(tmp_path, settings):
    """Write catalogue data to a temp file and point the settings at it."""
    def _make(data):
        p = tmp_path / 'game.devprod.json'
        p.write_text(json.dumps(data), encoding='utf-8')
        settings.DEVPROD_CATALOGUE_PATH = str(p)
        return p
    return _make


@pytest.fixture(autouse=True)
def override_settings(settings):
    settings.DEVPROD_COOKIE = 'secret-cookie'
    settings.DEVPROD_VERIFY = False
    settings.DEVPROD_REQUEST_TIMEOUT = None


# ---------------------------------------------------------------------------
# sync_catalogue_task
# ---------------------------------------------------------------------------

@responses_lib.activate
def test_sync_creates_and_updates_and_saves_file(catalogue_file):
    path = catalogue_file(CATALOGUE)
    responses_lib.add(responses_lib.POST, ADD_PRODUCT_URL, body=confirm_html(99887766))
    responses_lib.add(responses_lib.POST, UPDATE_URL.format(24681357), json={}, status=200)
    responses_lib.add(responses_lib.POST, UPDATE_PASS_URL, json={'isValid': True}, status=200)

    result = sync_catalogue_task()

    assert result['created'] == 1
    assert result['updated'] == 2
    assert result['outdated'] == 2
    assert result['token_retries'] == 0
    saved = load_catalogue(path)
    coins, gems = saved.products
    assert coins.remote_id == 99887766
    assert coins.stored_fingerprint == compute_fingerprint(coins)
    assert gems.stored_fingerprint == compute_fingerprint(gems)
    assert saved.passes[0].stored_fingerprint == compute_fingerprint(saved.passes[0])


@responses_lib.activate
def test_second_run_sends_nothing(catalogue_file):
    catalogue_file(CATALOGUE)
    responses_lib.add(responses_lib.POST, ADD_PRODUCT_URL, body=confirm_html(99887766))
    responses_lib.add(responses_lib.POST, UPDATE_URL.format(24681357), json={}, status=200)
    responses_lib.add(responses_lib.POST, UPDATE_PASS_URL, json={'isValid': True}, status=200)

    sync_catalogue_task()
    calls_after_first_run = len(responses_lib.calls)
    result = sync_catalogue_task()

    assert len(responses_lib.calls) == calls_after_first_run
    assert result['created'] == result['updated'] == 0
    assert result['skipped_update'] == 3


@responses_lib.activate
def test_stale_token_is_recovered_transparently(catalogue_file):
    catalogue_file({'universeId': UNIVERSE_ID, 'products': [CATALOGUE['products'][1]]})
    rejected = {'errors': [{'code': 0, 'message': 'Token Validation Failed'}]}
    responses_lib.add(responses_lib.POST, UPDATE_URL.format(24681357), json=rejected, status=403,
                      headers={'x-csrf-token': 'fresh'})
    responses_lib.add(responses_lib.POST, UPDATE_URL.format(24681357), json={}, status=200)

    result = sync_catalogue_task()

    assert result['updated'] == 1
    assert result['update_failed'] == 0
    assert result['token_retries'] == 1


@responses_lib.activate
def test_partial_failure_still_saves_new_ids(catalogue_file):
    path = catalogue_file(CATALOGUE)
    responses_lib.add(responses_lib.POST, ADD_PRODUCT_URL, body=confirm_html(99887766))
    responses_lib.add(responses_lib.POST, UPDATE_URL.format(24681357),
                      json={'errors': [{'code': 7, 'message': 'Invalid price.'}]}, status=400)
    responses_lib.add(responses_lib.POST, UPDATE_PASS_URL, json={'isValid': True}, status=200)

    result = sync_catalogue_task()

    assert result['created'] == 1
    assert result['update_failed'] == 1
    assert result['updated'] == 1
    saved = load_catalogue(path)
    assert saved.products[0].remote_id == 99887766
    assert saved.products[1].stored_fingerprint == 'stale='


@responses_lib.activate
def test_create_disabled_leaves_new_entries_alone(catalogue_file):
    catalogue_file({'universeId': UNIVERSE_ID, 'products': [CATALOGUE['products'][0]]})

    result = sync_catalogue_task(create=False)

    assert result['skipped_create'] == 1
    assert len(responses_lib.calls) == 0


def test_file_is_saved_even_if_reconcile_raises(catalogue_file):
    path = catalogue_file(CATALOGUE)

    with patch('devprod.tasks.save_catalogue') as mock_save, \
            patch('devprod.tasks.reconcile', side_effect=RuntimeError('boom')):
        with pytest.raises(RuntimeError):
            sync_catalogue_task()

    mock_save.assert_called_once()
    assert mock_save.call_args.args[0] == str(path)


# ---------------------------------------------------------------------------
# refresh_fingerprints_task
# ---------------------------------------------------------------------------

@responses_lib.activate
def test_refresh_fingerprints_marks_remote_entries_current(catalogue_file):
    path = catalogue_file(CATALOGUE)

    result = refresh_fingerprints_task()

    assert result == {'total': 2, 'updated': 2, 'unchanged': 0}
    assert len(responses_lib.calls) == 0
    saved = load_catalogue(path)
    assert saved.products[0].stored_fingerprint is None
    gems = saved.products[1]
    assert gems.stored_fingerprint == compute_fingerprint(gems)
