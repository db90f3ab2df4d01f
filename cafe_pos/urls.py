# cafe_pos/urls.py

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("dining.urls")),
    path("api-auth/", include("rest_framework.urls")),
]
