"""
Lua scripts for atomic parked-sale operations in Redis.
"""

# Allocate an id, store the record and index it by parked time in one step
CREATE_PARKED_SALE_SCRIPT = """
local records_key = KEYS[1]
local index_key = KEYS[2]
local seq_key = KEYS[3]
local record_template = ARGV[1]
local parked_at = tonumber(ARGV[2])

local parked_id = tostring(redis.call('INCR', seq_key))

-- Record is stored with its id filled in
local record = cjson.decode(record_template)
record['id'] = parked_id
redis.call('HSET', records_key, parked_id, cjson.encode(record))
redis.call('ZADD', index_key, parked_at, parked_id)

return parked_id
"""

# Remove a record and its index entry; returns 1 if it existed
DELETE_PARKED_SALE_SCRIPT = """
local records_key = KEYS[1]
local index_key = KEYS[2]
local parked_id = ARGV[1]

local deleted = redis.call('HDEL', records_key, parked_id)
redis.call('ZREM', index_key, parked_id)

return deleted
"""


class AtomicScripts:
    """Runs the parked-sale scripts through the RedisClient wrapper"""

    def __init__(self, redis_wrapper):
        """
        Initialize with RedisClient wrapper (not raw redis.Redis client)
        so calls go through the wrapper's retry logic and error mapping
        """
        self.redis_wrapper = redis_wrapper

    def create_parked_sale(
        self,
        records_key: str,
        index_key: str,
        seq_key: str,
        record_json: str,
        parked_at: float
    ) -> str:
        """Execute create script, returning the allocated id"""
        result = self.redis_wrapper.eval(
            CREATE_PARKED_SALE_SCRIPT,
            3,
            records_key,
            index_key,
            seq_key,
            record_json,
            str(parked_at)
        )
        return str(result)

    def delete_parked_sale(self, records_key: str, index_key: str, parked_id: str) -> bool:
        """Execute delete script"""
        result = self.redis_wrapper.eval(
            DELETE_PARKED_SALE_SCRIPT,
            2,
            records_key,
            index_key,
            parked_id
        )
        return int(result or 0) > 0
