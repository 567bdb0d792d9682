REDIS_THEME_KEY = "chat:theme:{username}" # lowercased username - theme name string

# Only theme preferences live in Redis. Rooms, groups and message history are
# process memory and disappear on restart.
