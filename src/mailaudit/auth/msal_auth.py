"""Delegated Graph sign-in for audit operators.

The audit log query API only accepts delegated tokens for an account that can
read the unified audit log, so the operator signs in once with the device
code flow and later runs reuse the cached refresh token.

The token cache holds refresh tokens for a privileged account. It is created
with mode 600 and rewritten only when MSAL reports a change.

Usage:
    from mailaudit.auth.msal_auth import GraphAuth

    auth = GraphAuth.from_config(config.auth)
    token = auth.get_access_token()
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msal
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from mailaudit.core.errors import AuthenticationError
from mailaudit.core.logging import get_logger

if TYPE_CHECKING:
    from mailaudit.config_schema import AuthConfig

logger = get_logger(__name__)

# stderr keeps the sign-in prompt out of CSV written to stdout
console = Console(stderr=True)

AUTHORITY_HOST = "https://login.microsoftonline.com"
CACHE_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR

# Device flow error codes with an operator-facing explanation
DEVICE_FLOW_ERRORS = {
    "authorization_pending": (
        "Sign-in timed out before the device code was entered. "
        "Run the command again and finish signing in within the time limit."
    ),
    "authorization_declined": (
        "Sign-in was declined. Run the command again and accept the "
        "audit log permission request."
    ),
    "expired_token": "The device code expired. Run the command again to get a new code.",
}


class GraphAuth:
    """Acquires delegated Graph tokens for the audit commands.

    Attributes:
        client_id: Entra ID application (client) ID
        tenant_id: Tenant ID or domain the audit log belongs to
        scopes: Delegated Graph scopes requested at sign-in
        token_cache_path: Where the MSAL token cache is persisted
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        scopes: list[str],
        token_cache_path: str | Path,
    ):
        if not client_id or not client_id.strip():
            raise AuthenticationError(
                "auth.client_id is required. Register a public client app in "
                "Microsoft Entra ID, grant it AuditLogsQuery.Read.All (delegated) "
                "and put its client ID in config.yaml."
            )

        self.client_id = client_id.strip()
        self.tenant_id = tenant_id
        self.scopes = list(scopes)
        self.token_cache_path = Path(token_cache_path)
        self.cache = msal.SerializableTokenCache()
        self._load_cache()

        self.app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=f"{AUTHORITY_HOST}/{tenant_id}",
            token_cache=self.cache,
        )

        logger.debug("GraphAuth initialized", tenant_id=tenant_id, scopes=self.scopes)

    @classmethod
    def from_config(cls, auth_config: AuthConfig) -> GraphAuth:
        """Build from the `auth` config section."""
        return cls(
            client_id=auth_config.client_id,
            tenant_id=auth_config.tenant_id,
            scopes=auth_config.scopes,
            token_cache_path=auth_config.token_cache_path,
        )

    def get_access_token(self) -> str:
        """Return an access token, signing in with a device code if the cache can't help.

        Raises:
            AuthenticationError: If sign-in fails or is abandoned
        """
        token = self._acquire_silent()
        if token:
            return token

        logger.info("No usable cached token, starting device code sign-in")
        return self._acquire_by_device_code()

    def _acquire_silent(self) -> str | None:
        accounts = self.app.get_accounts()
        if not accounts:
            return None

        result = self.app.acquire_token_silent(scopes=self.scopes, account=accounts[0])
        if not result or "access_token" not in result:
            logger.debug("Silent token refresh failed", account=accounts[0].get("username"))
            return None

        self._save_cache()
        return result["access_token"]

    def _acquire_by_device_code(self) -> str:
        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            description = flow.get("error_description", "no device code returned")
            logger.error("Device code flow could not start", error=description)
            raise AuthenticationError(
                f"Could not start device code sign-in: {description}. "
                "Enable 'Allow public client flows' on the app registration "
                "(Authentication > Advanced settings)."
            )

        self._show_prompt(flow["verification_uri"], flow["user_code"])
        result: dict[str, Any] = self.app.acquire_token_by_device_flow(flow)

        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            if error in DEVICE_FLOW_ERRORS:
                raise AuthenticationError(DEVICE_FLOW_ERRORS[error])
            description = result.get("error_description", "sign-in failed")
            logger.error("Device code sign-in failed", error=error, description=description)
            raise AuthenticationError(f"Sign-in failed ({error}): {description}")

        self._save_cache()
        claims = result.get("id_token_claims") or {}
        logger.info("Signed in", username=claims.get("preferred_username", "unknown"))
        return result["access_token"]

    def _show_prompt(self, verification_uri: str, user_code: str) -> None:
        console.print(
            Panel(
                f"Open [bold blue]{escape(verification_uri)}[/bold blue] and enter "
                f"[bold green]{escape(user_code)}[/bold green]\n\n"
                "Sign in with an account allowed to search the audit log "
                "(e.g. Compliance Administrator).",
                title="Audit log sign-in",
                border_style="bright_blue",
            )
        )

    def _load_cache(self) -> None:
        if not self.token_cache_path.exists():
            return
        try:
            self.cache.deserialize(self.token_cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(
                "Ignoring unreadable token cache",
                path=str(self.token_cache_path),
                error=str(e),
            )

    def _save_cache(self) -> None:
        """Persist the token cache if MSAL changed it (owner read/write only)."""
        if not self.cache.has_state_changed:
            return

        try:
            self.token_cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                self.token_cache_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CACHE_FILE_MODE
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(self.cache.serialize())
            # An existing file keeps its old mode through os.open
            os.chmod(self.token_cache_path, CACHE_FILE_MODE)
        except OSError as e:
            # Next run signs in again
            logger.error("Failed to save token cache", path=str(self.token_cache_path), error=str(e))
            return

        self.cache.has_state_changed = False
        logger.debug("Token cache saved", path=str(self.token_cache_path))
