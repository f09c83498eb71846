"""Main URL mapping configuration file.

Only the admin site is routed here; the drive core has no HTTP surface
of its own.
"""

from django.contrib import admin
from django.urls import path

admin.autodiscover()

urlpatterns = [
    path('admin/', admin.site.urls),
]
