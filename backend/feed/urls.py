"""
URL configuration for the Feed API.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import PostViewSet, UserPostsView, LikeView, FollowView

router = DefaultRouter()
router.register(r'posts', PostViewSet, basename='post')

urlpatterns = [
    path('', include(router.urls)),
    path('users/<int:user_id>/posts/', UserPostsView.as_view(), name='user-posts'),
    path('like/', LikeView.as_view(), name='like'),
    path('follow/', FollowView.as_view(), name='follow'),

    # Token endpoints feeding the JWT-authenticated viewer session
    path('auth/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
]
