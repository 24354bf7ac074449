from modrelay.errors import GatewayFailure, NotFound
from modrelay.gateway import NotificationGateway, WorkspaceDirectory


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeGateway(NotificationGateway):
    def __init__(self):
        self.dms = []
        self.posts = []
        self.unknown_users = set()
        self.fail_dm = False
        self.fail_post = False

    async def send_direct_message(self, user_id, text):
        if user_id in self.unknown_users:
            raise NotFound("Discord user not found or bot cannot access this user.")
        if self.fail_dm:
            raise GatewayFailure("dm down")
        self.dms.append((user_id, text))
        return f"user{user_id}"

    async def post_to_channel(self, channel_id, content):
        if self.fail_post:
            raise GatewayFailure("channel down")
        self.posts.append((channel_id, content))
        return 9000 + len(self.posts)


class FakeDirectory(WorkspaceDirectory):
    def __init__(self):
        self.grants = []
        self.channels = []
        self.fail_grant = False

    async def grant_role(self, guild_id, user_id, role_id):
        if self.fail_grant:
            raise GatewayFailure("missing permissions")
        self.grants.append((guild_id, user_id, role_id))

    async def create_private_channel(self, guild_id, participant_ids):
        self.channels.append((guild_id, list(participant_ids)))
        return 7000 + len(self.channels)

    async def fetch_user(self, user_id):
        return {"id": user_id}
