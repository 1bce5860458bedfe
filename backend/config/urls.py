"""
URL configuration for the CodeConnects project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('feed.urls')),
]
