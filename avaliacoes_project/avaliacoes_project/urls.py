from django.contrib import admin
from django.urls import path, include
from django.shortcuts import redirect


def root_redirect(request):
    return redirect("admin:index")


urlpatterns = [
    # ROOT
    path("", root_redirect, name="root"),

    # DJANGO ADMIN (OPERATOR VIEWS)
    path("admin/", admin.site.urls),

    # JSON API
    path("api/", include("api.urls")),
]
