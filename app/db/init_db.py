from app.db.session import engine
from app.db.base import Base

# Import models so SQLAlchemy registers them
from app.users.models import User  # noqa
from app.photos.models import ReferencePhoto  # noqa
from app.social.models import SocialAccount, OAuthToken, SocialMediaItem  # noqa
from app.scans.models import ScanJob, ScanResult  # noqa


def init_db():
    Base.metadata.create_all(bind=engine)
