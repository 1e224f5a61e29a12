from typing import Callable

from dependency_injector import containers, providers
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from orderflow.infrastructure.easebuzz import EasebuzzSignatureVerifier
from orderflow.infrastructure.notifier import LoggingOrderNotifier
from orderflow.infrastructure.unit_of_work import UnitOfWork
from orderflow.infrastructure.zoho_client import ZohoClient


class InfrastructureContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    async_engine = providers.Singleton[AsyncEngine](
        create_async_engine,
        config.db.dsn,
        pool_size=config.db.pool_size,
        pool_recycle=config.db.pool_recycle,
        future=True,
    )
    session_factory: Callable[..., AsyncSession] = providers.Factory(
        sessionmaker, async_engine, expire_on_commit=False, class_=AsyncSession
    )
    unit_of_work = providers.Singleton[UnitOfWork](
        UnitOfWork, session_factory=session_factory
    )
    easebuzz_verifier = providers.Singleton[EasebuzzSignatureVerifier](
        EasebuzzSignatureVerifier,
        merchant_key=config.easebuzz.merchant_key,
        salt=config.easebuzz.salt,
    )
    zoho_client = providers.Singleton[ZohoClient](
        ZohoClient,
        accounts_domain=config.zoho.accounts_domain,
        client_id=config.zoho.client_id,
        client_secret=config.zoho.client_secret,
        refresh_token=config.zoho.refresh_token,
        crm_base_url=config.zoho.crm_base_url,
        books_base_url=config.zoho.books_base_url,
        books_organization_id=config.zoho.books_organization_id,
        timeout_seconds=config.zoho.timeout_seconds.as_float(),
    )
    notifier = providers.Singleton[LoggingOrderNotifier](LoggingOrderNotifier)
