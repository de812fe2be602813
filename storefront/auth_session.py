"""Authentication and session management."""

import logging
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from storefront.api_client import LiveDataNowClient
from storefront.config import Config
from storefront.exceptions import StorageUnavailableError, StorefrontException
from storefront.models import OtpVerification, User, UserUpdate
from storefront.responses import parse_auth_response, parse_user
from storefront.storage import AUTH_TOKEN_KEY, OTP_PHONE_KEY, USER_KEY, KeyValueStore

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "No token received"


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    OTP_PENDING = "otp_pending"
    AUTHENTICATED = "authenticated"


class AuthSessionManager:
    """
    Manages the bearer token and cached profile of one device.

    Every network operation records a readable message in `error` on failure
    and reports it through its return value; none of them raise.
    """

    def __init__(
        self,
        store: KeyValueStore,
        client: LiveDataNowClient,
        otp_enabled: Optional[bool] = None,
    ) -> None:
        """
        Initialize session manager.

        Args:
            store: Device-scoped key-value store holding token and profile
            client: Upstream API client
            otp_enabled: Whether login dispatches an OTP (default: Config.OTP_LOGIN_ENABLED)
        """
        self.store = store
        self.client = client
        self.otp_enabled = Config.OTP_LOGIN_ENABLED if otp_enabled is None else otp_enabled
        self.error: Optional[str] = None
        self.is_loading = False
        self._authenticating = False
        self.user: Optional[User] = self._load_user()

    @property
    def token(self) -> Optional[str]:
        try:
            return self.store.get(AUTH_TOKEN_KEY)
        except StorageUnavailableError:
            return None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def pending_phone(self) -> Optional[str]:
        """Phone an OTP was sent to and not yet verified"""
        try:
            return self.store.get(OTP_PHONE_KEY)
        except StorageUnavailableError:
            return None

    @property
    def state(self) -> AuthState:
        if self.is_authenticated:
            return AuthState.AUTHENTICATED
        if self._authenticating:
            return AuthState.AUTHENTICATING
        if self.pending_phone:
            return AuthState.OTP_PENDING
        return AuthState.ANONYMOUS

    def _load_user(self) -> Optional[User]:
        try:
            raw = self.store.get(USER_KEY)
        except StorageUnavailableError:
            return None
        if not raw:
            return None
        try:
            return User.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"Discarding malformed cached profile: {e.error_count()} errors")
            return None

    def _cache_user(self, user: User) -> None:
        self.store.set(USER_KEY, user.model_dump_json(by_alias=True, exclude_none=True))
        self.user = user

    def _fail(self, message: str) -> None:
        logger.warning(f"Auth operation failed: {message}")
        self.error = message

    async def _store_session(self, token: str, user: Optional[User]) -> Optional[User]:
        self.store.set(AUTH_TOKEN_KEY, token)
        if user is not None:
            self._cache_user(user)
            return user
        return await self.fetch_profile()

    async def fetch_profile(self) -> Optional[User]:
        """Refresh the cached profile from upstream"""
        self.is_loading = True
        try:
            user = parse_user(await self.client.profile.get())
            self._cache_user(user)
            self.error = None
            return user
        except StorefrontException as e:
            logger.error(f"Error fetching profile: {e}")
            self.error = "Failed to fetch profile"
            return None
        finally:
            self.is_loading = False

    async def resume(self) -> Optional[User]:
        """Fetch the profile when a token exists but nothing is cached"""
        if self.is_authenticated and self.user is None:
            await self.fetch_profile()
        return self.user

    async def login(self, phone: str, store_id: Optional[str] = None) -> bool:
        """
        Start login for a phone number.

        With OTP enabled, success means the code was dispatched and the
        session waits in OTP_PENDING. Otherwise the response must carry a
        token, which authenticates the session immediately.
        """
        phone = (phone or "").strip()
        if not phone:
            self._fail("Phone number is required")
            return False

        self.error = None
        self.is_loading = True
        self._authenticating = True
        logger.info("Attempting login")
        try:
            payload = await self.client.auth.login(phone, store_id)
            if self.otp_enabled:
                self.store.set(OTP_PHONE_KEY, phone)
                return True

            auth = parse_auth_response(payload, "auth/login")
            if not auth.token:
                self._fail(NO_TOKEN_MESSAGE)
                return False
            await self._store_session(auth.token, auth.user)
            return True
        except StorefrontException as e:
            self._fail(str(e) or "Login failed")
            return False
        finally:
            self._authenticating = False
            self.is_loading = False

    async def verify_otp(self, phone: str, otp: str, store_id: Optional[str] = None) -> OtpVerification:
        """Exchange phone and OTP for a bearer token"""
        phone = (phone or "").strip()
        otp = (otp or "").strip()
        if not phone or not otp:
            self._fail("Phone number and OTP are required")
            return OtpVerification(success=False, error=self.error)

        self.error = None
        self.is_loading = True
        self._authenticating = True
        try:
            auth = parse_auth_response(
                await self.client.auth.verify_otp(phone, otp, store_id), "auth/verify-otp"
            )
            if not auth.token:
                self._fail(NO_TOKEN_MESSAGE)
                return OtpVerification(success=False, error=self.error)

            user = await self._store_session(auth.token, auth.user)
            self.store.delete(OTP_PHONE_KEY)
            return OtpVerification(success=True, user=user)
        except StorefrontException as e:
            self._fail(str(e) or "OTP verification failed")
            return OtpVerification(success=False, error=self.error)
        finally:
            self._authenticating = False
            self.is_loading = False

    def logout(self) -> None:
        """Forget token and profile; the cart is left alone"""
        try:
            self.store.delete(AUTH_TOKEN_KEY)
            self.store.delete(USER_KEY)
            self.store.delete(OTP_PHONE_KEY)
        except StorageUnavailableError as e:
            logger.warning(f"Session not cleared from storage: {e}")
        self.user = None
        self.error = None

    async def update_profile(self, data: Union[UserUpdate, dict]) -> bool:
        """Send changed profile fields upstream and cache the result"""
        if not self.is_authenticated:
            self._fail("Not logged in")
            return False

        if isinstance(data, UserUpdate):
            data = data.model_dump(by_alias=True, exclude_unset=True)

        self.error = None
        self.is_loading = True
        try:
            user = parse_user(await self.client.profile.update(data))
            self._cache_user(user)
            return True
        except StorefrontException as e:
            self._fail(str(e) or "Failed to update profile")
            return False
        finally:
            self.is_loading = False
