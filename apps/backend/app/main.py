import logging
import os
import sys
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.routes.chat import chat_router
from app.routes.decision import decision_router
from app.routes.research import research_router
from app.services.errors import ServiceError

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

# Configure logging to output to stdout
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Set specific loggers
logging.getLogger("app").setLevel(logging.DEBUG)
logging.getLogger("httpx").setLevel(logging.WARNING)

SENTRY_DSN = os.getenv("SENTRY_DSN") or ""
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        release=os.getenv("SENTRY_RELEASE") or None,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05")),
        profiles_sample_rate=float(os.getenv("SENTRY_PROFILES_SAMPLE_RATE", "0.0")),
        integrations=[FastApiIntegration()],
        send_default_pii=False,
    )

app = FastAPI(title="AI Architect")
logger = logging.getLogger("app.main")


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.get("/")
def health():
    return {"status": "ok"}

app.include_router(chat_router)
app.include_router(research_router)
app.include_router(decision_router)
