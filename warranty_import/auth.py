from collections.abc import Callable
import logging
from pathlib import Path
import threading
import time

import httpx
from jose import jwt

from warranty_import.errors import CrmAuthError


logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_PATH = "/services/oauth2/token"
DEFAULT_EXPIRES_IN_SECONDS = 7200
EXPIRY_MARGIN_SECONDS = 60
ASSERTION_LIFETIME_SECONDS = 300


def build_jwt_assertion(
    *,
    client_id: str,
    username: str,
    audience: str,
    private_key_path: Path,
    now: float | None = None,
) -> str:
    if not private_key_path.exists():
        raise CrmAuthError(f"private key file not found: {private_key_path}")
    try:
        private_key = private_key_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CrmAuthError(f"failed to read private key file {private_key_path}: {exc}") from exc

    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": client_id,
        "sub": username,
        "aud": audience,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    return jwt.encode(claims, private_key, algorithm="RS256")


class TokenProvider:
    def __init__(
        self,
        http_client: httpx.Client,
        *,
        token_url: str,
        assertion_factory: Callable[[], str],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.http_client = http_client
        self.token_url = token_url
        self.assertion_factory = assertion_factory
        self.clock = clock
        self._lock = threading.Lock()
        # (access token, expires at), always swapped as one value.
        self._token: tuple[str, float] | None = None

    def get_token(self) -> str:
        token = self._valid_token()
        if token is not None:
            return token
        with self._lock:
            token = self._valid_token()
            if token is not None:
                return token
            return self._acquire()

    def refresh(self, stale_token: str | None = None) -> str:
        with self._lock:
            current = self._token
            if stale_token is not None and current is not None and current[0] != stale_token:
                return current[0]
            return self._acquire()

    def _valid_token(self) -> str | None:
        current = self._token
        if current is None:
            return None
        access_token, expires_at = current
        if self.clock() >= expires_at - EXPIRY_MARGIN_SECONDS:
            return None
        return access_token

    def _acquire(self) -> str:
        started = time.monotonic()
        logger.info("crm jwt authentication started")
        try:
            response = self.http_client.post(
                self.token_url,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self.assertion_factory()},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
            access_token = data["access_token"]
        except CrmAuthError:
            logger.error("crm jwt authentication failed", exc_info=True)
            raise
        except httpx.HTTPStatusError as exc:
            logger.error("crm jwt authentication failed", extra={"status_code": exc.response.status_code})
            raise CrmAuthError(
                f"failed to authenticate with CRM: {exc.response.status_code} {exc.response.text[:500]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("crm jwt authentication failed", extra={"error": str(exc)})
            raise CrmAuthError(f"failed to authenticate with CRM: {exc}", transient=True) from exc
        except (KeyError, ValueError) as exc:
            logger.error("crm jwt authentication failed", extra={"error": str(exc)})
            raise CrmAuthError(f"unexpected token response from CRM: {exc}") from exc

        expires_in = int(data.get("expires_in", DEFAULT_EXPIRES_IN_SECONDS))
        self._token = (access_token, self.clock() + expires_in)
        logger.info(
            "crm jwt authentication successful",
            extra={"expires_in": expires_in, "duration_seconds": round(time.monotonic() - started, 2)},
        )
        return access_token
