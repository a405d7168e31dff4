"""
Token lifecycle for the accounting integration.

TokenLifecycleManager owns every transition of the singleton credential:
connect (code exchange), refresh, legacy migration, scheduled proactive
refresh and disconnect. Callers that need to talk to the accounting API go
through get_valid_credential() and never read the store themselves.

Connectivity states (see ConnectionStatus):

    DISCONNECTED           no credential, no client identity or no access token
    CONNECTED_LEGACY       access token without refresh capability
    CONNECTED_REFRESHABLE  both tokens, access token comfortably valid
    EXPIRING               access token inside the expiring window
    EXPIRED_RECOVERABLE    access token expired, refresh token still valid
    EXPIRED_UNRECOVERABLE  refresh token expired; becomes DISCONNECTED
"""

import asyncio
import secrets
from typing import List, Optional, Tuple

import httpx

from ..config import AccountingAPIConfig, TokenPolicyConfig, get_config
from ..constants import ConnectionStatus, FailureReason, RefreshTrigger
from ..exceptions import (
    CredentialNotFoundError,
    ErrorCode,
    MigrationError,
    RefreshFailure,
    RequiresReconnectError,
    ValidationError,
)
from ..repositories.credential_store import CredentialStore
from ..schemas.credential_schemas import (
    Credential,
    ProactiveRefreshResult,
    TokenInfo,
    TokenResponse,
)
from ..utils.logger import get_logger, mask_secret
from ..utils.time_utils import Clock, expires_at_from, now_ms, remaining_ms
from .token_endpoint_client import TokenEndpointClient


def classify_credential(
    credential: Optional[Credential], now: int, policy: TokenPolicyConfig
) -> ConnectionStatus:
    """Map a stored credential onto its connectivity state at time now (epoch ms)."""
    if credential is None or not credential.is_connected:
        return ConnectionStatus.DISCONNECTED
    if credential.is_legacy:
        return ConnectionStatus.CONNECTED_LEGACY
    if credential.refresh_token_expires_at is not None and credential.refresh_token_expires_at <= now:
        return ConnectionStatus.EXPIRED_UNRECOVERABLE

    remaining = remaining_ms(credential.expires_at, now)
    if remaining is None:
        # Unknown expiry: refresh once to learn it
        return ConnectionStatus.EXPIRING
    if remaining <= 0:
        return ConnectionStatus.EXPIRED_RECOVERABLE
    if remaining < policy.expiring_window_ms:
        return ConnectionStatus.EXPIRING
    return ConnectionStatus.CONNECTED_REFRESHABLE


def _missing(**values: Optional[str]) -> List[str]:
    return [name for name, value in values.items() if not value]


class TokenLifecycleManager:
    """
    Acquires, validates, refreshes and migrates the integration credential.

    Refreshes within one process are serialized by an asyncio lock, and every
    refresh re-reads the store first, so a refresh token that another caller
    already rotated is never replayed.
    """

    def __init__(
        self,
        store: CredentialStore,
        endpoint_client: Optional[TokenEndpointClient] = None,
        policy: Optional[TokenPolicyConfig] = None,
        api_config: Optional[AccountingAPIConfig] = None,
        clock: Clock = now_ms,
    ):
        app_config = get_config()
        self.store = store
        self.policy = policy or app_config.token_policy
        self.api_config = api_config or app_config.accounting_api
        self._owns_endpoint_client = endpoint_client is None
        self.endpoint_client = endpoint_client or TokenEndpointClient(self.api_config)
        self.clock = clock
        self.logger = get_logger()
        self._refresh_lock = asyncio.Lock()

    @property
    def credential_key(self) -> str:
        return self.policy.credential_key

    async def aclose(self) -> None:
        """Close the token endpoint client if this manager created it."""
        if self._owns_endpoint_client:
            await self.endpoint_client.aclose()

    # ==================== CONNECT / DISCONNECT ====================

    def build_authorization_url(
        self,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Tuple[str, str]:
        """
        Build the provider authorization URL for the connect flow.

        Returns:
            (url, state) - the caller keeps state to check it on the callback
        """
        client_id = client_id or self.api_config.client_id
        redirect_uri = redirect_uri or self.api_config.redirect_uri
        missing = _missing(client_id=client_id, redirect_uri=redirect_uri)
        if missing:
            raise ValidationError(
                f"Cannot build authorization URL, missing: {', '.join(missing)}",
                field=missing[0],
                error_code=ErrorCode.MISSING_REQUIRED,
                missing_fields=missing,
            )

        state = state or secrets.token_urlsafe(32)
        url = httpx.URL(
            self.api_config.auth_url,
            params={
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "scope": self.api_config.scope,
                "state": state,
                "access_type": "offline",
                "response_type": "code",
            },
        )
        return str(url), state

    async def connect(
        self,
        client_id: str,
        client_secret: str,
        authorization_code: str,
        redirect_uri: str,
    ) -> Credential:
        """
        Exchange an authorization code and persist the resulting credential.

        Raises:
            ValidationError: a required parameter is missing
            AuthExchangeError: the code was rejected or the endpoint unreachable
        """
        missing = _missing(
            client_id=client_id,
            client_secret=client_secret,
            authorization_code=authorization_code,
            redirect_uri=redirect_uri,
        )
        if missing:
            raise ValidationError(
                f"Cannot connect, missing: {', '.join(missing)}",
                field=missing[0],
                error_code=ErrorCode.MISSING_REQUIRED,
                missing_fields=missing,
            )

        tokens = await self.endpoint_client.exchange_code(
            client_id, client_secret, authorization_code, redirect_uri
        )
        now = self.clock()
        credential = self._apply_tokens(
            Credential(key=self.credential_key, client_id=client_id, client_secret=client_secret),
            tokens,
            now,
        )
        self.store.upsert(credential)

        self.logger.info(
            "Accounting integration connected",
            extra={
                "access_token": mask_secret(credential.access_token),
                "expires_at": credential.expires_at,
                "is_legacy_token": credential.is_legacy_token,
            },
        )
        return credential

    def disconnect(self) -> bool:
        """Delete the stored credential. Returns False if nothing was connected."""
        deleted = self.store.delete(self.credential_key)
        self.logger.info("Accounting integration disconnected", extra={"deleted": deleted})
        return deleted

    # ==================== READ PATH ====================

    def connection_status(self) -> ConnectionStatus:
        return classify_credential(self.store.get(self.credential_key), self.clock(), self.policy)

    def get_token_info(self) -> TokenInfo:
        credential = self.store.get(self.credential_key)
        now = self.clock()
        status = classify_credential(credential, now, self.policy)
        if credential is None:
            return TokenInfo(status=status, connected=False)
        return TokenInfo(
            status=status,
            connected=status != ConnectionStatus.DISCONNECTED,
            is_legacy_token=credential.is_legacy,
            expires_at=credential.expires_at,
            refresh_token_expires_at=credential.refresh_token_expires_at,
            access_token_remaining_ms=remaining_ms(credential.expires_at, now),
            refresh_token_remaining_ms=remaining_ms(credential.refresh_token_expires_at, now),
            refresh_fail_count=credential.refresh_fail_count,
            last_refresh_attempt=credential.last_refresh_attempt,
            migration_attempt_count=credential.migration_attempt_count,
            migration_error=credential.migration_error,
        )

    async def get_valid_credential(self) -> Optional[Credential]:
        """
        Return a credential that can be used right now, or None when not connected.

        Expiring and expired-but-recoverable credentials are refreshed exactly
        once first. When that refresh fails, the old credential is still
        returned as long as its access token has not actually expired.
        """
        credential = self.store.get(self.credential_key)
        now = self.clock()
        status = classify_credential(credential, now, self.policy)

        if status == ConnectionStatus.DISCONNECTED:
            return None

        if status == ConnectionStatus.CONNECTED_LEGACY:
            if credential.expires_at is not None and credential.expires_at <= now:
                self.logger.warning(
                    "Legacy access token has expired and cannot be refreshed",
                    extra={"expires_at": credential.expires_at},
                )
                return None
            return credential

        if status == ConnectionStatus.EXPIRED_UNRECOVERABLE:
            self._mark_disconnected(credential, "refresh token expired")
            return None

        if status == ConnectionStatus.CONNECTED_REFRESHABLE:
            return credential

        try:
            return await self.refresh(credential, trigger=RefreshTrigger.ON_DEMAND)
        except RequiresReconnectError:
            return None
        except RefreshFailure as e:
            latest = self.store.get(self.credential_key) or credential
            now = self.clock()
            if latest.is_connected and latest.expires_at is not None and latest.expires_at > now:
                self.logger.warning(
                    "Token refresh failed, using access token until it expires",
                    extra={
                        "remaining_ms": latest.expires_at - now,
                        "refresh_fail_count": latest.refresh_fail_count,
                        "error": e.message,
                    },
                )
                return latest
            # Tokens stay stored; the next call retries the refresh
            self.logger.warning(
                "Token refresh failed after access token expiry",
                extra={
                    "refresh_fail_count": latest.refresh_fail_count,
                    "error": e.message,
                },
            )
            return None

    # ==================== REFRESH ====================

    async def refresh(
        self,
        credential: Optional[Credential] = None,
        trigger: RefreshTrigger = RefreshTrigger.ON_DEMAND,
    ) -> Credential:
        """
        Mint a new access token with the latest stored refresh token.

        Args:
            credential: The credential the caller was using. When the store
                already holds a different, still fresh access token, that one
                is returned without calling the token endpoint.
            trigger: Why the refresh happens, recorded in the refresh log

        Raises:
            CredentialNotFoundError: nothing refreshable is stored
            RequiresReconnectError: refresh token rejected or expired; credential is disconnected
            RefreshFailure: transient failure; credential is unchanged apart from the fail count
        """
        async with self._refresh_lock:
            stored = self.store.get(self.credential_key)
            if stored is None or not stored.is_connected:
                raise CredentialNotFoundError(operation="refresh", trigger=trigger.value)
            if stored.is_legacy:
                raise RefreshFailure(
                    "Legacy access token cannot be refreshed, migrate it first",
                    trigger=trigger.value,
                    reason=FailureReason.LEGACY_TOKEN.value,
                )

            now = self.clock()
            if (
                credential is not None
                and stored.access_token != credential.access_token
                and classify_credential(stored, now, self.policy)
                == ConnectionStatus.CONNECTED_REFRESHABLE
            ):
                self.logger.info(
                    "Access token already rotated by another caller, skipping refresh",
                    extra={"trigger": trigger.value, "expires_at": stored.expires_at},
                )
                return stored

            if stored.refresh_token_expires_at is not None and stored.refresh_token_expires_at <= now:
                message = "Refresh token has expired"
                self.store.record_refresh_attempt(self.credential_key, False, trigger, message)
                self._mark_disconnected(stored, message, failed_attempt_at=now)
                raise RequiresReconnectError(
                    f"{message}, the integration must be reconnected",
                    trigger=trigger.value,
                    reason=FailureReason.REFRESH_TOKEN_EXPIRED.value,
                )

            self.logger.info(
                "Refreshing access token",
                extra={
                    "trigger": trigger.value,
                    "refresh_token": mask_secret(stored.refresh_token),
                    "remaining_ms": remaining_ms(stored.expires_at, now),
                },
            )

            try:
                tokens = await self.endpoint_client.refresh(
                    stored.client_id, stored.client_secret, stored.refresh_token
                )
            except RequiresReconnectError as e:
                self.store.record_refresh_attempt(self.credential_key, False, trigger, e.message)
                self._mark_disconnected(stored, e.message, failed_attempt_at=now)
                raise
            except RefreshFailure as e:
                self.store.record_refresh_attempt(self.credential_key, False, trigger, e.message)
                self.store.upsert(
                    stored.model_copy(
                        update={
                            "refresh_fail_count": stored.refresh_fail_count + 1,
                            "last_refresh_attempt": now,
                        }
                    )
                )
                raise

            refreshed = self._apply_tokens(stored, tokens, self.clock())
            self.store.upsert(refreshed)
            self.store.record_refresh_attempt(
                self.credential_key,
                True,
                trigger,
                "Token refreshed",
                token_length=len(refreshed.access_token),
            )
            self.logger.info(
                "Access token refreshed",
                extra={
                    "trigger": trigger.value,
                    "expires_at": refreshed.expires_at,
                    "refresh_token_rotated": refreshed.refresh_token != stored.refresh_token,
                },
            )
            return refreshed

    async def check_and_proactively_refresh(self, force: bool = False) -> ProactiveRefreshResult:
        """
        Scheduled check: refresh when the access token is close to expiry.

        Due when forced, or when the remaining life is inside the day tier
        (proactive_refresh_window_ms) or below the minute tier
        (proactive_refresh_floor_ms). Never raises; failures are logged and
        reported in the result.
        """
        status = ConnectionStatus.DISCONNECTED
        try:
            credential = self.store.get(self.credential_key)
            now = self.clock()
            status = classify_credential(credential, now, self.policy)

            if status == ConnectionStatus.DISCONNECTED:
                return ProactiveRefreshResult(status=status, skipped_reason="not_connected")
            if status == ConnectionStatus.CONNECTED_LEGACY:
                return ProactiveRefreshResult(
                    status=status,
                    skipped_reason="legacy_token",
                    remaining_ms=remaining_ms(credential.expires_at, now),
                )

            remaining = remaining_ms(credential.expires_at, now)
            # TokenPolicyConfig keeps floor <= window, so the minute tier is
            # always covered by the day tier; it stays as the documented floor
            due = (
                force
                or remaining is None
                or remaining <= self.policy.proactive_refresh_window_ms
                or remaining < self.policy.proactive_refresh_floor_ms
            )
            if not due:
                return ProactiveRefreshResult(
                    status=status, skipped_reason="not_due", remaining_ms=remaining
                )

            trigger = RefreshTrigger.FORCED if force else RefreshTrigger.SCHEDULED
            refreshed = await self.refresh(credential, trigger=trigger)
            now = self.clock()
            return ProactiveRefreshResult(
                refreshed=True,
                status=classify_credential(refreshed, now, self.policy),
                remaining_ms=remaining_ms(refreshed.expires_at, now),
            )
        except RefreshFailure as e:
            self.logger.warning(
                "Scheduled token refresh failed",
                extra={"error": e.message, "requires_reconnect": e.requires_reconnect},
            )
            return ProactiveRefreshResult(
                status=ConnectionStatus.DISCONNECTED if e.requires_reconnect else status,
                error=e.message,
            )
        except Exception as e:
            # Unattended: report, never propagate
            self.logger.exception(
                "Unexpected error in scheduled token refresh", extra={"error": str(e)}
            )
            return ProactiveRefreshResult(status=status, error=str(e))

    # ==================== MIGRATION ====================

    async def migrate_legacy(
        self, client_id: str, client_secret: str, legacy_access_token: str
    ) -> Credential:
        """
        Convert a legacy access-only token into a refreshable credential.

        Raises:
            ValidationError: a required parameter is missing
            MigrationError: already migrated, or the provider rejected the token.
                Terminal, the admin has to reconnect from scratch.
        """
        missing = _missing(
            client_id=client_id,
            client_secret=client_secret,
            legacy_access_token=legacy_access_token,
        )
        if missing:
            raise ValidationError(
                f"Cannot migrate, missing: {', '.join(missing)}",
                field=missing[0],
                error_code=ErrorCode.MISSING_REQUIRED,
                missing_fields=missing,
            )

        stored = self.store.get(self.credential_key)
        if stored is not None and stored.is_connected and not stored.is_legacy:
            raise MigrationError(
                "Credential is already refreshable, nothing to migrate",
                reason=FailureReason.ALREADY_MIGRATED.value,
            )

        try:
            tokens = await self.endpoint_client.migrate(client_id, client_secret, legacy_access_token)
        except MigrationError as e:
            if stored is not None:
                self.store.upsert(
                    stored.model_copy(
                        update={
                            "migration_attempt_count": stored.migration_attempt_count + 1,
                            "migration_error": e.context.get("provider_error") or e.message,
                        }
                    )
                )
            raise

        base = stored or Credential(key=self.credential_key)
        credential = self._apply_tokens(
            base.model_copy(
                update={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "migration_attempt_count": 0,
                    "migration_error": None,
                }
            ),
            tokens,
            self.clock(),
        )
        self.store.upsert(credential)
        self.logger.info(
            "Legacy token migrated",
            extra={"expires_at": credential.expires_at, "access_token": mask_secret(credential.access_token)},
        )
        return credential

    # ==================== INTERNALS ====================

    def _apply_tokens(self, credential: Credential, tokens: TokenResponse, now: int) -> Credential:
        """Fold a token endpoint response into the credential."""
        refresh_token = tokens.refresh_token or credential.refresh_token
        if tokens.refresh_token:
            refresh_token_expires_at = now + self.policy.refresh_token_lifetime_ms
        else:
            # Not rotated: the old refresh token keeps its lifetime
            refresh_token_expires_at = credential.refresh_token_expires_at

        return credential.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at_from(
                    tokens.expires_in or self.policy.default_expires_in, now
                ),
                "refresh_token_expires_at": refresh_token_expires_at if refresh_token else None,
                "is_legacy_token": not refresh_token,
                "refresh_fail_count": 0,
                "last_refresh_attempt": now,
            }
        )

    def _mark_disconnected(
        self, credential: Credential, reason: str, failed_attempt_at: Optional[int] = None
    ) -> Credential:
        """Drop both tokens but keep the client identity, so reconnecting needs only a new code."""
        update = {
            "access_token": None,
            "refresh_token": None,
            "expires_at": None,
            "refresh_token_expires_at": None,
        }
        if failed_attempt_at is not None:
            update["refresh_fail_count"] = credential.refresh_fail_count + 1
            update["last_refresh_attempt"] = failed_attempt_at
        disconnected = credential.model_copy(update=update)
        self.store.upsert(disconnected)
        self.logger.warning(
            "Accounting integration requires reconnect",
            extra={"reason": reason, "refresh_fail_count": disconnected.refresh_fail_count},
        )
        return disconnected
