REDIS_META_KEY = "room:meta:{slug}" # room id - document hash
REDIS_USERS_KEY = "room:users:{slug}" # room id - sorted set of connection IDs, scored by join sequence
REDIS_NAMES_KEY = "room:names:{slug}" # room id - connection id -> display name
REDIS_SEQ_KEY = "room:seq:{slug}" # room id - join sequence counter
REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room id - pub/sub channel name
REDIS_ACCOUNT_KEY = "user:meta:{email}" # account reference hash
REDIS_ACCOUNT_ROOMS_KEY = "user:rooms:{email}" # sorted set of visited room ids

# **Example `room:meta:{id}` hash fields**
# - `room_id` = `{roomId}`
# - `name` = display name of the room
# - `code` = latest document text
# - `language` = language tag shown in the editor
# - `created_at` = ISO timestamp
