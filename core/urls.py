"""
URL configuration for the contact form relay.
"""
from django.urls import path, include

urlpatterns = [
    path('api/contact/', include('contact.urls')),  # Public contact form (no auth)
]
