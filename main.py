from contextlib import asynccontextmanager
import logging
from dotenv import load_dotenv
load_dotenv(override=True)
from fastapi import FastAPI
from custody import config
from custody.dependencies import close_clients
from custody.errors import CustodyError, custody_exception_handler, generic_exception_handler
from custody.database import close_connection_pool
from custody.deposits import init_database
from custody.solana.routes import router as deposit_router
from custody.solana.watcher import recover_watchers, stop_all_watchers

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_database()
        recover_watchers()
    except Exception as e:
        logger.error(f"Failed to initialize deposit store on startup: {e}", exc_info=True)
    yield
    await stop_all_watchers()
    await close_clients()
    close_connection_pool()


app = FastAPI(title="SOL Deposit Custody API",
    version="1.0.0",
    description="API for single-use SOL deposit addresses, payment verification and custody sweeps",
    lifespan=lifespan)
app.add_exception_handler(CustodyError, custody_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)
app.include_router(deposit_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
