import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from redis.exceptions import NoScriptError, RedisError

from storefront.cache.utils import as_text, build_key
from storefront.otp.constants import OTP_KEY_PREFIX, RATE_LIMIT_KEY_PART, OtpPurpose, VerifyStatus, logger
from storefront.otp.exceptions import OtpStoreError
from storefront.otp.lua_scripts import LUA_OTP_ISSUE, LUA_OTP_VERIFY
from storefront.otp.models import IssueOutcome, RateLimitPolicy, VerifyOutcome


class OtpStore(ABC):
    """
    Shared TTL store for otp records and per-contact issuance trackers.

    Implementations must make `issue` and `verify` atomic across processes.
    """

    @abstractmethod
    async def issue(self, contact: str, purpose: OtpPurpose, fields: Dict[str, Any],
                    policy: RateLimitPolicy, now_ms: int, record_ttl_ms: int) -> IssueOutcome:
        ...

    @abstractmethod
    async def verify(self, contact: str, purpose: OtpPurpose, channel: str,
                     code_hash: str, now_ms: int) -> VerifyOutcome:
        ...

    @abstractmethod
    async def load_record(self, contact: str, purpose: OtpPurpose) -> Optional[Dict[bytes, bytes]]:
        ...

    @abstractmethod
    async def load_tracker(self, contact: str) -> Optional[Dict[bytes, bytes]]:
        ...

    @abstractmethod
    async def delete_record(self, contact: str, purpose: OtpPurpose) -> None:
        ...

    @abstractmethod
    async def delete_tracker(self, contact: str) -> None:
        ...


class RedisOtpStore(OtpStore):

    def __init__(self, redis_client, key_prefix: str = OTP_KEY_PREFIX):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._script_shas: Dict[str, str] = {}
        self._script_lock = asyncio.Lock()

    def record_key(self, contact: str, purpose: OtpPurpose) -> str:
        return build_key(self.key_prefix, purpose.value, contact)

    def rate_limit_key(self, contact: str) -> str:
        return build_key(self.key_prefix, RATE_LIMIT_KEY_PART, contact)

    async def _ensure_script_loaded(self, name: str, script: str) -> Optional[str]:
        """Load a script into the redis script cache once, None means fall back to EVAL."""
        sha = self._script_shas.get(name)
        if sha:
            return sha
        async with self._script_lock:
            sha = self._script_shas.get(name)
            if sha:
                return sha
            try:
                sha = as_text(await self.redis.script_load(script))
            except RedisError:
                logger.warning("otp.store.script_load_failed", extra={"script": name})
                return None
            self._script_shas[name] = sha
            return sha

    async def _run_script(self, name: str, script: str, keys: Sequence[str], args: Sequence[Any]) -> List[Any]:
        sha = await self._ensure_script_loaded(name, script)
        try:
            if sha:
                try:
                    return await self.redis.evalsha(sha, len(keys), *keys, *args)
                except NoScriptError:
                    # script cache flushed on the server
                    self._script_shas.pop(name, None)
            return await self.redis.eval(script, len(keys), *keys, *args)
        except RedisError as e:
            logger.error("otp.store.script_failed", extra={"script": name, "error": str(e)})
            raise OtpStoreError(f"otp store unavailable while running {name}") from e

    async def issue(self, contact, purpose, fields, policy, now_ms, record_ttl_ms) -> IssueOutcome:
        args: List[Any] = [
            now_ms, policy.max_requests, policy.window_ms,
            policy.cooldown_ms, policy.block_ms, record_ttl_ms,
        ]
        for name, value in fields.items():
            args.extend((name, value))

        res = await self._run_script(
            "otp_issue", LUA_OTP_ISSUE,
            (self.rate_limit_key(contact), self.record_key(contact, purpose)), args,
        )
        if not res or len(res) < 2:
            raise OtpStoreError("unexpected reply from otp issue script")

        if int(res[0]) == 1:
            return IssueOutcome(allowed=True, issuance_count=int(res[1]))
        return IssueOutcome(allowed=False, retry_after_ms=int(res[1]))

    async def verify(self, contact, purpose, channel, code_hash, now_ms) -> VerifyOutcome:
        res = await self._run_script(
            "otp_verify", LUA_OTP_VERIFY,
            (self.record_key(contact, purpose),), (now_ms, channel, code_hash),
        )
        if not res:
            raise OtpStoreError("unexpected reply from otp verify script")

        status = VerifyStatus(as_text(res[0]))
        if status is VerifyStatus.VERIFIED:
            return VerifyOutcome(status=status, payload_raw=res[1])
        if status in (VerifyStatus.MISMATCHED, VerifyStatus.EXHAUSTED):
            return VerifyOutcome(status=status, remaining_attempts=int(res[1]))
        return VerifyOutcome(status=status)

    async def load_record(self, contact, purpose):
        try:
            raw = await self.redis.hgetall(self.record_key(contact, purpose))
        except RedisError as e:
            raise OtpStoreError("otp store unavailable") from e
        return raw or None

    async def load_tracker(self, contact):
        try:
            raw = await self.redis.hgetall(self.rate_limit_key(contact))
        except RedisError as e:
            raise OtpStoreError("otp store unavailable") from e
        return raw or None

    async def delete_record(self, contact, purpose) -> None:
        try:
            await self.redis.delete(self.record_key(contact, purpose))
        except RedisError as e:
            raise OtpStoreError("otp store unavailable") from e

    async def delete_tracker(self, contact) -> None:
        try:
            await self.redis.delete(self.rate_limit_key(contact))
        except RedisError as e:
            raise OtpStoreError("otp store unavailable") from e
