import logging
import re
from enum import Enum
from http.cookiejar import DefaultCookiePolicy
from threading import Lock

import requests
from bs4 import BeautifulSoup
from django.conf import settings

from .exceptions import ContractViolation
from .models import Entry, EntryKind, Failure, FailureKind, RemoteDetails, RemoteResult, Success

logger = logging.getLogger(__name__)

COOKIE_PREFIX = '.ROBLOSECURITY='

TOKEN_HEADER = 'x-csrf-token'
TOKEN_REJECTED_STATUS = 403
TOKEN_REJECTED_PHRASES = ('XSRF Token Validation Failed', 'Token Validation Failed')

ADD_PRODUCT_URL = 'https://www.roblox.com/places/developerproducts/add'
UPDATE_PRODUCT_URL = 'https://develop.roblox.com/v1/universes/{universe_id}/developerproducts/{product_id}/update'
UPDATE_PASS_URL = 'https://www.roblox.com/game-pass/update'
PRODUCT_INFO_URL = 'https://economy.roblox.com/v1/developer-products/{product_id}/info'
PASS_INFO_URL = 'https://economy.roblox.com/v1/game-pass/{pass_id}/game-pass-product-info'

DUPLICATE_NAME_CODE = 4
# replaces the platform's "Developer product exists already."
DUPLICATE_NAME_MESSAGE = "Developer Product with the same name already exists"
_DUPLICATE_NAME_RE = re.compile(r'Developer\s+Product\s+with\s+the\s+same\s+name\s+already\s+exists')
_PRODUCT_ID_RE = re.compile(r'\d{4,}')


def normalize_cookie(value: str) -> str:
    """Turn a bare .ROBLOSECURITY value into a Cookie header value."""
    value = value.strip()
    if value.startswith(COOKIE_PREFIX):
        return value
    return f"{COOKIE_PREFIX}{value};"


class Attempt(Enum):
    FIRST = 1
    RETRY = 2


class RobloxSession:
    """
    Authenticated request layer for the Roblox web APIs.

    Roblox rotates an anti-forgery token (`x-csrf-token`) and sends the
    fresh value on every response, including the 403 that rejects a stale
    one. The session keeps the latest token, attaches it to every request
    and retries a rejected request exactly once:

        FIRST --[token rejected]--> RETRY --> result or error

    Any other failure, and any failure of the retry, propagates unchanged.
    One instance is meant to be shared by every call of a sync run.
    """

    def __init__(self, cookie: str = None, timeout: float = None):
        cookie = cookie if cookie is not None else settings.DEVPROD_COOKIE
        if not cookie:
            raise ContractViolation("No Roblox cookie configured; set DEVPROD_COOKIE.")
        self._session = requests.Session()
        # The credential lives in a fixed header; response cookies must not replace it.
        self._session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self._session.headers.update({'Cookie': normalize_cookie(cookie)})
        self._timeout = timeout if timeout is not None else getattr(settings, 'DEVPROD_REQUEST_TIMEOUT', None)
        self._token = None
        self._token_lock = Lock()
        self.retries = 0

    @property
    def token(self):
        return self._token

    def send(self, method: str, url: str, **kwargs) -> requests.Response:
        """Issue a request, retrying once if the session token was rejected."""
        attempt = Attempt.FIRST
        while True:
            response = self._issue(method, url, **kwargs)

            if attempt is Attempt.FIRST and self._is_token_rejection(response):
                logger.info("Session token rejected for %s %s; retrying with refreshed token.", method, url)
                self.retries += 1
                attempt = Attempt.RETRY
                continue

            response.raise_for_status()
            return response

    def _issue(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = dict(kwargs.pop('headers', None) or {})
        if self._token:
            headers[TOKEN_HEADER] = self._token
        response = self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        self._store_token(response)
        return response

    def _store_token(self, response: requests.Response):
        token = response.headers.get(TOKEN_HEADER)
        if token:
            with self._token_lock:
                self._token = token

    @staticmethod
    def _is_token_rejection(response: requests.Response) -> bool:
        if response.status_code != TOKEN_REJECTED_STATUS:
            return False
        if response.reason in TOKEN_REJECTED_PHRASES:
            return True
        # The JSON APIs report the phrase in the body instead of the status line.
        try:
            body = response.json()
        except ValueError:
            return False
        errors = body.get('errors') if isinstance(body, dict) else None
        if not isinstance(errors, list):
            return False
        return any(
            isinstance(error, dict) and error.get('message') in TOKEN_REJECTED_PHRASES
            for error in errors
        )


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------

def _drop_absent(fields: dict) -> dict:
    return {key: value for key, value in fields.items() if value is not None}


def _transport_failure(exc: Exception) -> Failure:
    return Failure(FailureKind.TRANSPORT, -1, f"Unknown error: {exc}")


def parse_add_response(html: str) -> RemoteResult:
    """Decode the HTML fragment returned by the legacy developer product form."""
    soup = BeautifulSoup(html or '', 'html.parser')
    status = soup.find(id='DeveloperProductStatus')
    classes = status.get('class', []) if status is not None else []

    if 'status-confirm' in classes:
        match = _PRODUCT_ID_RE.search(status.get_text())
        if match:
            return Success(int(match.group(0)))
        return Failure(FailureKind.UNKNOWN_RESPONSE, -4, "Unknown error: add success without a returned product id")

    if 'error-message' in classes:
        message = status.get_text(strip=True)
        if _DUPLICATE_NAME_RE.search(message):
            return Failure(FailureKind.DUPLICATE_NAME, DUPLICATE_NAME_CODE, DUPLICATE_NAME_MESSAGE)
        return Failure(FailureKind.VALIDATION, -2, message)

    return Failure(
        FailureKind.UNKNOWN_RESPONSE, -2,
        "Unknown error: bad response format. Are you logged in? Has the legacy developer products API changed?",
    )


def parse_update_error(exc: requests.HTTPError) -> Failure:
    """Decode the `errors` array of a failed develop.roblox.com call."""
    try:
        body = exc.response.json()
    except (AttributeError, ValueError):
        body = None
    errors = body.get('errors') if isinstance(body, dict) else None
    if errors is None:
        return _transport_failure(exc)
    if not isinstance(errors, list) or not errors or not isinstance(errors[0], dict):
        return Failure(FailureKind.UNKNOWN_RESPONSE, -1, "Unknown error: missing specific error data from response")

    error = errors[0]
    code = error.get('code')
    if error.get('message') in TOKEN_REJECTED_PHRASES:
        return Failure(
            FailureKind.UNKNOWN_RESPONSE, -1,
            f"Unknown error: {error['message']}. Are you logged in? Is DEVPROD_COOKIE still valid?",
        )
    if code == DUPLICATE_NAME_CODE:
        return Failure(FailureKind.DUPLICATE_NAME, DUPLICATE_NAME_CODE, DUPLICATE_NAME_MESSAGE)
    return Failure(
        FailureKind.VALIDATION,
        code if isinstance(code, int) else -1,
        error.get('message') or "Unknown error: missing error message from response",
    )


def parse_pass_update_response(response: requests.Response, pass_id: int) -> RemoteResult:
    if not response.content:
        return Failure(FailureKind.MISSING_RESULT, -2, "Unknown error: missing result")
    try:
        result = response.json()
    except ValueError:
        return Failure(FailureKind.UNKNOWN_RESPONSE, -2, "Unknown error: game pass update response is not JSON")
    if not result:
        return Failure(FailureKind.MISSING_RESULT, -2, "Unknown error: missing result")
    if not isinstance(result, dict):
        return Failure(FailureKind.UNKNOWN_RESPONSE, -2, "Unknown error: bad game pass update response format")
    if result.get('isValid'):
        return Success(pass_id)
    return Failure(FailureKind.VALIDATION, -2, result.get('error') or "Unknown error: update rejected without a message")


def _pick(data: dict, *keys):
    for key in keys:
        if key in data:
            return data[key]
    return None


# ---------------------------------------------------------------------------
# Remote operations
# ---------------------------------------------------------------------------

class RobloxClient:
    """Create/update/fetch operations for developer products and game passes."""

    def __init__(self, session: RobloxSession = None):
        self._session = session if session is not None else RobloxSession()

    @property
    def session(self) -> RobloxSession:
        return self._session

    def create(self, universe_id: int, entry: Entry) -> RemoteResult:
        if entry.remote_id is not None:
            raise ContractViolation(f"Cannot create {entry}: it already has a remote id")
        if not entry.is_product:
            return Failure(
                FailureKind.UNSUPPORTED, -3,
                "Game passes cannot be created through the API; create it on the website and set its gamepassId",
            )

        form = _drop_absent({
            'universeId': universe_id,
            'name': entry.name,
            'description': entry.description,
            'priceInRobux': entry.price,
            'imageAssetId': entry.image_id,
        })
        try:
            response = self._session.send('POST', ADD_PRODUCT_URL, data=form)
        except requests.RequestException as exc:
            return _transport_failure(exc)
        return parse_add_response(response.text)

    def update_product(self, universe_id: int, entry: Entry) -> RemoteResult:
        self._require_remote_id(entry, EntryKind.PRODUCT)
        url = UPDATE_PRODUCT_URL.format(universe_id=universe_id, product_id=entry.remote_id)
        body = _drop_absent({
            'Name': entry.name,
            'Description': entry.description,
            'IconImageAssetId': entry.image_id,
            'PriceInRobux': entry.price,
        })
        try:
            self._session.send('POST', url, json=body)
        except requests.HTTPError as exc:
            return parse_update_error(exc)
        except requests.RequestException as exc:
            return _transport_failure(exc)
        return Success(entry.remote_id)

    def update_pass(self, entry: Entry) -> RemoteResult:
        self._require_remote_id(entry, EntryKind.PASS)
        for_sale = bool(entry.price)
        body = _drop_absent({
            'id': entry.remote_id,
            'name': entry.name,
            'description': entry.description,
            'isForSale': for_sale,
            'price': entry.price if for_sale else None,
        })
        try:
            response = self._session.send('POST', UPDATE_PASS_URL, json=body)
        except requests.RequestException as exc:
            return _transport_failure(exc)
        return parse_pass_update_response(response, entry.remote_id)

    def fetch_details(self, entry: Entry):
        """Return the entry's RemoteDetails as stored by Roblox, or a Failure."""
        if entry.remote_id is None:
            raise ContractViolation(f"Cannot fetch {entry}: it has no remote id")
        if entry.is_product:
            url = PRODUCT_INFO_URL.format(product_id=entry.remote_id)
        else:
            url = PASS_INFO_URL.format(pass_id=entry.remote_id)

        try:
            response = self._session.send('GET', url)
        except requests.RequestException as exc:
            return _transport_failure(exc)
        try:
            data = response.json()
        except ValueError:
            return Failure(FailureKind.UNKNOWN_RESPONSE, -2, "Unknown error: product info response is not JSON")
        if not isinstance(data, dict):
            return Failure(FailureKind.UNKNOWN_RESPONSE, -2, "Unknown error: bad product info response format")

        return RemoteDetails(
            name=_pick(data, 'Name', 'name'),
            description=_pick(data, 'Description', 'description'),
            price=_pick(data, 'PriceInRobux', 'priceInRobux', 'price'),
        )

    @staticmethod
    def _require_remote_id(entry: Entry, kind: EntryKind):
        if entry.kind is not kind:
            raise ContractViolation(f"Cannot update {entry} as a {kind.value}")
        if not isinstance(entry.remote_id, int):
            raise ContractViolation(f"Cannot update {entry}: bad or missing remote id")
