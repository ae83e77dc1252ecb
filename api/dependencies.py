"""
API dependencies - access to the application context built at startup
"""
from fastapi import Depends, Request

from application.services.payment_api import PaymentAPI
from core.settings import PaymentSettings
from infrastructure.context import AppContext


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context


def get_payment_api(context: AppContext = Depends(get_app_context)) -> PaymentAPI:
    return context.api


def get_payment_settings(context: AppContext = Depends(get_app_context)) -> PaymentSettings:
    return context.payment_settings
