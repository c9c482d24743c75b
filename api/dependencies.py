"""
API依赖项 - 组合根：为路由装配应用服务

网关与通知器通过独立的依赖函数提供，测试中可用 app.dependency_overrides 替换。
"""
from fastapi import Depends, Path

from application.ports.notifier import PaymentNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentApplicationService
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments import SUPPORTED_PROVIDERS, get_payment_gateway
from infrastructure.tasks import TaskDispatcher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from domain.common.exceptions import NotFoundException


def get_payment_settings() -> PaymentSettings:
    return payment_settings


def get_gateway(settings: PaymentSettings = Depends(get_payment_settings)) -> PaymentGateway:
    """默认网关（PAYMENT__DEFAULT_PROVIDER）"""
    return get_payment_gateway(settings.default_provider, settings)


def get_razorpay_gateway(settings: PaymentSettings = Depends(get_payment_settings)) -> PaymentGateway:
    """旧版 /webhook 入口固定使用 Razorpay"""
    return get_payment_gateway("razorpay", settings)


def get_provider_gateway(
    provider: str = Path(..., description="razorpay | stripe"),
    settings: PaymentSettings = Depends(get_payment_settings),
) -> PaymentGateway:
    """按路径参数选择网关（/webhooks/{provider}）"""
    name = provider.lower()
    if name not in SUPPORTED_PROVIDERS:
        raise NotFoundException(f"Unsupported payment provider: {provider}", details={"provider": provider})
    return get_payment_gateway(name, settings)


def get_uow_factory():
    return SQLAlchemyUnitOfWork


def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()


def get_notifier(dispatcher: TaskDispatcher = Depends(get_task_dispatcher)) -> PaymentNotifier:
    return dispatcher


def _build_service(gateway, notifier, settings, uow_factory) -> PaymentApplicationService:
    return PaymentApplicationService(
        uow_factory=uow_factory,
        gateway=gateway,
        notifier=notifier,
        settings=settings,
    )


def get_payment_service(
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    settings: PaymentSettings = Depends(get_payment_settings),
    uow_factory=Depends(get_uow_factory),
) -> PaymentApplicationService:
    return _build_service(gateway, notifier, settings, uow_factory)


def get_razorpay_payment_service(
    gateway: PaymentGateway = Depends(get_razorpay_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    settings: PaymentSettings = Depends(get_payment_settings),
    uow_factory=Depends(get_uow_factory),
) -> PaymentApplicationService:
    return _build_service(gateway, notifier, settings, uow_factory)


def get_provider_payment_service(
    gateway: PaymentGateway = Depends(get_provider_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    settings: PaymentSettings = Depends(get_payment_settings),
    uow_factory=Depends(get_uow_factory),
) -> PaymentApplicationService:
    return _build_service(gateway, notifier, settings, uow_factory)
