"""
PolicyOS Django adapter URL routing.
"""

from django.urls import path

from adapters.django_api import views


urlpatterns = [
    path("policyos/decision/evaluate", views.decision_evaluate_view),
    path("policyos/decisions/explain", views.decision_explain_view),
    path("policyos/plugins", views.plugins_list_view),
    path("policyos/ai/status", views.ai_status_view),
]
