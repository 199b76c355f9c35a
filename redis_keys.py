REDIS_ROW_KEY = "table:{table}:row:{id}" # hash, every column JSON-encoded
REDIS_INDEX_KEY = "table:{table}:index" # sorted set of row ids scored by creation time
REDIS_COLUMN_INDEX_KEY = "table:{table}:by:{column}:{value}" # sorted set of row ids sharing a foreign key
REDIS_CHANGES_CHANNEL = "table:{table}:changes" # pub/sub channel name

# **Example `table:messages:row:{id}` hash fields**
# - `id` = "\"{messageId}\""
# - `room_id` = "\"{roomId}\""
# - `user_id` = "\"{userId}\""
# - `content` = "\"hello\""
# - `is_system_message` = "false"
# - `created_at` = "\"2024-05-01T10:00:00+00:00\""

# **Example change event published on `table:messages:changes`**
# {"type": "INSERT", "table": "messages", "new": {...}, "old": null}
