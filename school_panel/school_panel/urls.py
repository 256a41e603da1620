"""URL configuration for school_panel project."""
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/schedule/', include('schedule.urls')),
]
