"""
Atomic Redis operations for the reminder followup system

Every script here touches exactly one key so the queue never depends on
multi-key transactions, and works unchanged on a clustered Redis.
"""
import logging
from typing import Dict

import redis

logger = logging.getLogger("redis-atomic")

# Replace a hash field only when it still holds the expected value
COMPARE_AND_SET_FIELD_SCRIPT = """
local current = redis.call('HGET', KEYS[1], ARGV[1])
if current == ARGV[2] then
    redis.call('HSET', KEYS[1], ARGV[1], ARGV[3])
    return 1
end
return 0
"""

# Apply a set of field updates only when a guard field holds the expected value
CONDITIONAL_HASH_UPDATE_SCRIPT = """
local current = redis.call('HGET', KEYS[1], ARGV[1])
if current ~= ARGV[2] then
    return 0
end
for i = 3, #ARGV, 2 do
    redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""


class AtomicRedisOperations:
    """
    Single-key atomic operations implemented as registered Lua scripts
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

        self.compare_and_set_script = self.redis.register_script(COMPARE_AND_SET_FIELD_SCRIPT)
        self.conditional_update_script = self.redis.register_script(CONDITIONAL_HASH_UPDATE_SCRIPT)

    def compare_and_set_field(self, key: str, field: str, expected: str, new_value: str) -> bool:
        """
        Atomically replace field's value if it equals expected

        Returns:
            True if the field was replaced, False if another writer got there first
        """
        result = self.compare_and_set_script(keys=[key], args=[field, expected, new_value])
        return int(result) == 1

    def conditional_update(self, key: str, guard_field: str, expected: str, updates: Dict[str, str]) -> bool:
        """
        Atomically write updates to the hash if guard_field equals expected
        """
        args = [guard_field, expected]
        for field, value in updates.items():
            args.extend([field, value])
        result = self.conditional_update_script(keys=[key], args=args)
        return int(result) == 1
