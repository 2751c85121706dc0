"""Socket.IO event names shared with the frontend."""

# client -> server
ROOM_CREATE = "room:create"
ROOM_JOIN = "room:join"
ROOM_LEAVE = "room:leave"
GAME_START = "game:start"
GAME_STOP = "game:stop"
ANSWERS_UPDATE = "answers:update"
ANSWERS_SUBMIT = "answers:submit"
PLAY_AGAIN_REQUEST = "play_again:request"
PLAY_AGAIN_ACCEPT = "play_again:accept"
PLAY_AGAIN_DECLINE = "play_again:decline"

# server -> client
ROOM_STATE = "room:state"
ROOM_LEFT = "room:left"
ROOM_NOTICE = "room:notice"
ROOM_ERROR = "room:error"
GAME_TICK = "game:tick"
