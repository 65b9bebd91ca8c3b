from django.apps.config import AppConfig


class SiteportAppConfig(AppConfig):
    name = "siteport"
    verbose_name = "Content store"
    default_auto_field = "django.db.models.AutoField"
