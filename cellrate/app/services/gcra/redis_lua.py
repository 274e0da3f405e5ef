"""Redis Lua scripts for GCRA rate limiting.

Each script reads, decides and writes a key's TAT in one atomic step, so
concurrent callers on any number of hosts can never interleave a decision for
the same key. The arithmetic matches ``engine.gcra_allow_n`` and
``engine.gcra_allow_at_most``.

KEYS[1] = prefixed rate limit key
ARGV[1] = burst
ARGV[2] = rate
ARGV[3] = period in seconds
ARGV[4] = events requested
Returns: {allowed, remaining, retry_after, reset_after}; the two durations are
strings because Redis truncates Lua numbers to integers in replies, and
retry_after is "-1" when the caller is not throttled.
"""

# Shared prologue: parameters, the server clock and the stored TAT.
# Time comes from the Redis server so callers with skewed clocks agree on "now".
# It is taken relative to 2017-01-01 to keep values small enough for a double
# to hold microseconds.
_PROLOGUE = """
    if redis.replicate_commands then
        redis.replicate_commands()
    end

    local key = KEYS[1]
    local burst = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local period = tonumber(ARGV[3])
    local cost = tonumber(ARGV[4])
    local cell_epsilon = 0.001

    local emission_interval = period / rate
    local tolerance = emission_interval * burst

    local jan_1_2017 = 1483228800
    local now = redis.call('TIME')
    now = (tonumber(now[1]) - jan_1_2017) + (tonumber(now[2]) / 1000000)

    local tat = now
    local stored = redis.call('GET', key)
    if stored then
        tat = tonumber(stored)
        if not tat then
            return redis.error_reply('ERR malformed rate limit state at ' .. key)
        end
    end
    tat = math.max(tat, now)

    local function whole_cells(seconds)
        return math.floor(seconds / emission_interval + cell_epsilon)
    end

    local function clamp(value, low, high)
        return math.max(low, math.min(high, value))
    end

    local function store(new_tat)
        local reset_after = new_tat - now
        if reset_after > 0 then
            redis.call('SET', key, string.format('%.6f', new_tat), 'PX', math.ceil(reset_after * 1000))
        end
        return math.max(0, reset_after)
    end
"""

# All-or-nothing admission of ARGV[4] events.
ALLOW_N_SCRIPT = _PROLOGUE + """
    local new_tat = tat + emission_interval * cost
    local allow_at = new_tat - tolerance
    local diff = now - allow_at

    if diff / emission_interval < -cell_epsilon then
        -- Denied: stored state stays as it was
        local remaining = clamp(whole_cells(tolerance - (tat - now)), 0, burst)
        return {0, remaining, tostring(-diff), tostring(tat - now)}
    end

    local reset_after = store(new_tat)
    local remaining = clamp(whole_cells(diff), 0, burst)
    return {cost, remaining, '-1', tostring(reset_after)}
"""

# Admit as many of ARGV[4] events as fit right now, possibly none.
ALLOW_AT_MOST_SCRIPT = _PROLOGUE + """
    local available = now + tolerance - tat
    local allowed = clamp(whole_cells(available), 0, cost)

    if allowed < 1 then
        local retry_after = math.max(0, emission_interval - available)
        return {0, 0, tostring(retry_after), tostring(tat - now)}
    end

    local new_tat = tat + emission_interval * allowed
    local reset_after = store(new_tat)
    local remaining = clamp(whole_cells(now + tolerance - new_tat), 0, burst)
    return {allowed, remaining, '-1', tostring(reset_after)}
"""
