from pymongo.database import Database

from aggregation import AggregationService
from config import Settings
from content import ContentStore
from database import DocumentStore, connect
from groups import GroupService
from identity import IdentityProvider
from profiles import ProfileDirectory
from sharing import SharingService


class Services:
    """Every service built over one store; the HTTP layer gets this by injection."""

    def __init__(self, settings: Settings, db: Database):
        self.settings = settings
        self.store = DocumentStore(db, settings.app_id)
        self.identity = IdentityProvider(
            self.store,
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            expire_minutes=settings.access_token_expire_minutes,
        )
        self.profiles = ProfileDirectory(self.store)
        self.content = ContentStore(self.store)
        self.sharing = SharingService(self.store, self.content, self.profiles)
        self.groups = GroupService(self.store)
        self.aggregation = AggregationService(
            self.store, self.content, self.groups, timeout_seconds=settings.store_timeout_seconds
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        return cls(settings, connect(settings))
