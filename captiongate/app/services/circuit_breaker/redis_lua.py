"""Redis Lua scripts for shared circuit breaker state.

Every transition reads and writes the breaker hash inside one script, so
instances racing on the same operation never interleave a read-modify-write.
The scripts mirror ``transitions.py``.

Hash fields: state, failures, successes, last_failure, in_flight.
Each script returns {state, failures, successes, last_failure, in_flight};
ACQUIRE prefixes {allowed, trial, retry_after_ms (-1 when unknown)}.
"""

_PRELUDE = """
    local key = KEYS[1]
    local raw = redis.call('HMGET', key, 'state', 'failures', 'successes', 'last_failure', 'in_flight')
    local state = raw[1] or 'CLOSED'
    local failures = tonumber(raw[2]) or 0
    local successes = tonumber(raw[3]) or 0
    local last_failure = tonumber(raw[4]) or 0
    local in_flight = tonumber(raw[5]) or 0

    local function save(ttl)
        redis.call('HSET', key, 'state', state, 'failures', failures, 'successes', successes,
            'last_failure', last_failure, 'in_flight', in_flight)
        redis.call('EXPIRE', key, ttl)
    end
"""

# ARGV[1] now ms, ARGV[2] reset timeout ms, ARGV[3] half-open attempts, ARGV[4] ttl
ACQUIRE_SCRIPT = _PRELUDE + """
    local now = tonumber(ARGV[1])
    local reset_timeout = tonumber(ARGV[2])
    local max_trials = tonumber(ARGV[3])
    local allowed, trial, retry_after = 1, 0, -1

    if state == 'OPEN' then
        local elapsed = now - last_failure
        if elapsed < reset_timeout then
            allowed = 0
            retry_after = reset_timeout - elapsed
        else
            state = 'HALF_OPEN'
            successes = 0
            in_flight = 1
            trial = 1
            save(tonumber(ARGV[4]))
        end
    elseif state == 'HALF_OPEN' then
        if in_flight < max_trials then
            in_flight = in_flight + 1
            trial = 1
            save(tonumber(ARGV[4]))
        else
            allowed = 0
        end
    end
    return {allowed, trial, retry_after, state, failures, successes, last_failure, in_flight}
"""

# ARGV[1] trial (0/1), ARGV[2] half-open attempts, ARGV[3] ttl
RECORD_SUCCESS_SCRIPT = _PRELUDE + """
    local trial = tonumber(ARGV[1]) == 1
    successes = successes + 1
    if state == 'HALF_OPEN' then
        if trial and in_flight > 0 then
            in_flight = in_flight - 1
        end
        if successes >= tonumber(ARGV[2]) then
            state = 'CLOSED'
            failures = 0
            in_flight = 0
        end
    elseif state == 'CLOSED' then
        failures = 0
    end
    save(tonumber(ARGV[3]))
    return {state, failures, successes, last_failure, in_flight}
"""

# ARGV[1] trial (0/1), ARGV[2] now ms, ARGV[3] failure threshold, ARGV[4] ttl
RECORD_FAILURE_SCRIPT = _PRELUDE + """
    failures = failures + 1
    last_failure = tonumber(ARGV[2])
    if state == 'HALF_OPEN' or failures >= tonumber(ARGV[3]) then
        state = 'OPEN'
        successes = 0
        in_flight = 0
    end
    save(tonumber(ARGV[4]))
    return {state, failures, successes, last_failure, in_flight}
"""

# ARGV[1] trial (0/1), ARGV[2] ttl
RELEASE_SCRIPT = _PRELUDE + """
    if tonumber(ARGV[1]) == 1 and state == 'HALF_OPEN' and in_flight > 0 then
        in_flight = in_flight - 1
        save(tonumber(ARGV[2]))
    end
    return {state, failures, successes, last_failure, in_flight}
"""
