COUPLE_MEMBERS_KEY = "couple:members:{couple_id}" # couple id - set of member user IDs

# **Membership**
# - Written by the account layer when an invite is accepted: `SADD couple:members:{id} {user1} {user2}`.
# - Read on every websocket handshake to check the connecting user belongs to the couple.
# - Room state itself (connections, presence) is never stored in Redis; it lives in the RoomCoordinator.
