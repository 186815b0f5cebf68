"""
Django Signals for the songs app.

Only one receiver lives here: every User gets a Profile row as soon as it
is created, so the read path can always select_related('author__profile').

Trending scores are NOT maintained via signals. Signals do not fire on
QuerySet.update() / QuerySet.delete(), and the score change must share the
transaction of the row write, so services.py calls trending.py directly.
"""

from django.contrib.auth.models import User
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Profile


@receiver(post_save, sender=User)
def create_profile(sender, instance, created, **kwargs):
    """
    Seed the profile's display name from the user's full name.

    get_or_create keeps this safe if a Profile was created explicitly first.
    """
    if created:
        Profile.objects.get_or_create(
            user=instance,
            defaults={'display_name': instance.get_full_name()}
        )
