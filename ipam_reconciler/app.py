from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config.settings import setup_logging
from .database.allocation_ledger import AllocationLedgerStore
from .database.mapping_store import DeploymentMappingStore
from .database.migrations import run_migrations
from .database.mysql_connection import get_mysql_pool, close_mysql_pool
from .database.netbox_client import NetBoxRegistryClient
from .database.registry_cache import RegistryCacheStore
from .services.allocation_service import AllocationService
from .services.deployment_service import DeploymentService
from .services.sync_service import SyncService
from .api.routes import router

# Setup logging
logger = setup_logging()


def build_services(app: FastAPI, pool, registry: NetBoxRegistryClient) -> None:
    """Wire stores and services onto app.state"""
    cache = RegistryCacheStore(pool)
    ledger = AllocationLedgerStore(pool)
    mappings = DeploymentMappingStore(pool)

    allocation_service = AllocationService(cache, ledger)
    app.state.allocation_service = allocation_service
    app.state.sync_service = SyncService(registry, cache)
    app.state.deployment_service = DeploymentService(registry, cache, allocation_service, mappings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        pool = await get_mysql_pool()
        await run_migrations(pool)
        build_services(app, pool, NetBoxRegistryClient())
        logger.info("✅ IPAM reconciler initialized")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    yield

    # Shutdown
    await close_mysql_pool()


# FastAPI app - used by uvicorn server
app = FastAPI(title="IPAM Reconciler API", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")
