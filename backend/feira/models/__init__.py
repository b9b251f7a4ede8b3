from feira.models.user import User
from feira.models.admin_user import AdminUser
from feira.models.category import Category
from feira.models.ad import Ad, AdImage
from feira.models.favorite import Favorite
from feira.models.notification import Notification
from feira.models.site_setting import SiteSetting
from feira.models.boost import BoostPromotion, BoostedAd
from feira.models.boost_transition import BoostTransition
from feira.models.webhook_event import WebhookEvent
from feira.models.job_run import JobRun

__all__ = [
    "User",
    "AdminUser",
    "Category",
    "Ad",
    "AdImage",
    "Favorite",
    "Notification",
    "SiteSetting",
    "BoostPromotion",
    "BoostedAd",
    "BoostTransition",
    "WebhookEvent",
    "JobRun",
]
