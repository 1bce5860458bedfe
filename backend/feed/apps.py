from django.apps import AppConfig


class FeedConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'feed'
    verbose_name = 'CodeConnects feed'

    def ready(self):
        from . import signals  # noqa: F401
