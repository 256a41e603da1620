from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

app_name = 'schedule'

router = DefaultRouter()
router.register(r'terms', views.TermViewSet, basename='term')
router.register(r'rooms', views.RoomViewSet, basename='room')
router.register(r'students', views.StudentViewSet, basename='student')
router.register(r'lessons', views.LessonViewSet, basename='lesson')
router.register(r'bookings', views.HybridBookingViewSet, basename='booking')

urlpatterns = [
    path('', include(router.urls)),
]
