"""
Dashboard — клиент дашборда: слой запросов, представления, корень композиции.
"""

from botdash.dashboard.client import DashboardAPI, DashboardRequestError
from botdash.dashboard.root import Dashboard
from botdash.dashboard.views import PLACEHOLDER, StatusView, TasksView, Toast, ToastCenter, ViewState

__all__ = [
    "PLACEHOLDER",
    "Dashboard",
    "DashboardAPI",
    "DashboardRequestError",
    "StatusView",
    "TasksView",
    "Toast",
    "ToastCenter",
    "ViewState",
]
