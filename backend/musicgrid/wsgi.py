"""
WSGI config for musicgrid project.
"""
import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'musicgrid.settings')
application = get_wsgi_application()
