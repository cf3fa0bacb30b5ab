from django.urls import path
from . import views

urlpatterns = [
    # Health check
    path("health", views.health, name="health"),

    # Session provisioning (channel + media token)
    path("call/provision", views.call_provision, name="call_provision"),

    # Call signaling
    path("call/initiate", views.call_initiate, name="call_initiate"),
    path("call/accept", views.call_accept, name="call_accept"),
    path("call/end", views.call_end, name="call_end"),
    path("call/delete", views.call_delete, name="call_delete"),
    path("call/status/<str:call_id>", views.call_status, name="call_status"),

    # Routes used by mobile clients released before call/*
    path("initiateCall", views.call_initiate, name="legacy_initiate_call"),
    path("acceptCall", views.call_accept, name="legacy_accept_call"),
    path("endCall", views.call_end, name="legacy_end_call"),
]
