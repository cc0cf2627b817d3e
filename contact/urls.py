"""
Contact Form URL Configuration
"""
from django.urls import path
from .views import ContactFormSubmitView

app_name = 'contact'

urlpatterns = [
    path('submit', ContactFormSubmitView.as_view(), name='submit'),
]
