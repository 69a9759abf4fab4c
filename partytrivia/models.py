from tortoise import fields
from tortoise.models import Model


class User(Model):
    """User account stored in the database."""

    id = fields.IntField(primary_key=True)
    username = fields.CharField(max_length=50, unique=True, index=True)
    password_hash = fields.CharField(max_length=128)
    avatar_url = fields.CharField(max_length=255, null=True)
    bio = fields.TextField(null=True)
    # --- Aggregate gameplay statistics --- #
    wins = fields.IntField(default=0)
    total_games = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "users"


class Room(Model):
    """A game session identified by a short join code."""

    id = fields.IntField(primary_key=True)
    code = fields.CharField(max_length=12, unique=True, index=True)
    host_id = fields.IntField()
    status = fields.CharField(max_length=16, default="lobby")  # lobby | playing | finished
    mode = fields.CharField(max_length=16, default="teams")  # teams | spin
    red_score = fields.IntField(default=0)
    blue_score = fields.IntField(default=0)
    red_name = fields.CharField(max_length=50, default="Red Team")
    blue_name = fields.CharField(max_length=50, default="Blue Team")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "rooms"


class RoomUser(Model):
    """Membership of a user in a room, including their team."""

    id = fields.IntField(primary_key=True)
    room = fields.ForeignKeyField("models.Room", related_name="members")
    user = fields.ForeignKeyField("models.User", related_name="memberships")
    team = fields.CharField(max_length=16, default="spectator")  # red | blue | spectator
    is_host = fields.BooleanField(default=False)

    class Meta:
        table = "room_users"
        unique_together = (("room", "user"),)


class Message(Model):
    """Append-only chat / system log of a room."""

    id = fields.IntField(primary_key=True)
    room = fields.ForeignKeyField("models.Room", related_name="messages")
    # Plain integer so that 0 can denote the system author
    user_id = fields.IntField()
    content = fields.TextField()
    type = fields.CharField(max_length=16, default="chat")  # chat | system
    team = fields.CharField(max_length=16, null=True)  # None for global chat
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "messages"
        ordering = ["created_at", "id"]


class Question(Model):
    """Trivia question.

    Rows without a room make up the shared question bank. A row with a room
    is the question a team authored for that room and is still pending.
    """

    id = fields.IntField(primary_key=True)
    text = fields.TextField()
    answer = fields.TextField()
    category = fields.CharField(max_length=50, default="general")
    difficulty = fields.CharField(max_length=20, default="medium")
    room = fields.ForeignKeyField("models.Room", related_name="questions", null=True)
    author_team = fields.CharField(max_length=16, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "questions"
