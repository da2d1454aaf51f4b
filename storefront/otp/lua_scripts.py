

# Rate-limit check, counter increment and record write in one atomic step,
# so a refused issuance never leaves a record behind and two concurrent
# issuances cannot both slip under the limit.
#
# KEYS[1] rate limit tracker hash, KEYS[2] otp record hash
# ARGV: now_ms, limit, window_ms, cooldown_ms, block_ms, record_ttl_ms,
#       then field/value pairs for the record
# Returns {1, issuance_count} when issued, {0, retry_after_ms} when refused.
LUA_OTP_ISSUE = """
local rl_key = KEYS[1]
local record_key = KEYS[2]
local now_ms = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
local window_ms = tonumber(ARGV[3])
local cooldown_ms = tonumber(ARGV[4])
local block_ms = tonumber(ARGV[5])
local record_ttl_ms = tonumber(ARGV[6])

local locked_until = tonumber(redis.call("HGET", rl_key, "locked_until_ms") or "0")
if locked_until > now_ms then
  return {0, locked_until - now_ms}
end

local count = tonumber(redis.call("HGET", rl_key, "issuance_count") or "0")
local window_started = tonumber(redis.call("HGET", rl_key, "window_started_ms") or "0")
local last_issued = tonumber(redis.call("HGET", rl_key, "last_issued_ms") or "0")

-- fixed window anchored at the first issuance; roll over once it has elapsed
if count == 0 or (now_ms - window_started) >= window_ms then
  count = 0
  window_started = now_ms
end

if cooldown_ms > 0 and count > 0 and (now_ms - last_issued) < cooldown_ms then
  return {0, cooldown_ms - (now_ms - last_issued)}
end

local window_left = window_started + window_ms - now_ms

if count >= limit then
  if block_ms > 0 then
    redis.call("HSET", rl_key, "locked_until_ms", now_ms + block_ms)
    redis.call("PEXPIRE", rl_key, math.max(block_ms, window_left))
    return {0, block_ms}
  end
  return {0, window_left}
end

count = count + 1
redis.call("HSET", rl_key,
  "issuance_count", count,
  "window_started_ms", window_started,
  "last_issued_ms", now_ms,
  "locked_until_ms", 0)
redis.call("PEXPIRE", rl_key, math.max(window_left, cooldown_ms))

-- one live record per (contact, purpose)
redis.call("DEL", record_key)
for i = 7, #ARGV, 2 do
  redis.call("HSET", record_key, ARGV[i], ARGV[i + 1])
end
redis.call("PEXPIRE", record_key, record_ttl_ms)

return {1, count}
"""


# Verify a submitted code hash against the live record.
#
# KEYS[1] otp record hash
# ARGV: now_ms, channel, code_hash
# Returns {status} or {status, extra}; extra is the payload on success and
# the remaining attempts on a mismatch.
LUA_OTP_VERIFY = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])

if redis.call("EXISTS", key) == 0 then
  return {"not_found"}
end

local expires_at = tonumber(redis.call("HGET", key, "expires_at_ms") or "0")
if expires_at <= now_ms then
  redis.call("DEL", key)
  return {"expired"}
end

-- wrong channel does not consume an attempt
if redis.call("HGET", key, "channel") ~= ARGV[2] then
  return {"channel_mismatch"}
end

if redis.call("HGET", key, "verified") == "1" then
  redis.call("DEL", key)
  return {"already_verified"}
end

if redis.call("HGET", key, "code_hash") ~= ARGV[3] then
  local attempts = redis.call("HINCRBY", key, "attempt_count", 1)
  local max_attempts = tonumber(redis.call("HGET", key, "max_attempts") or "0")
  if attempts >= max_attempts then
    redis.call("DEL", key)
    return {"exhausted", 0}
  end
  return {"mismatched", max_attempts - attempts}
end

redis.call("HSET", key, "verified", "1", "verified_at_ms", ARGV[1])
return {"verified", redis.call("HGET", key, "payload")}
"""
