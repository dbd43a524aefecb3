# main.py (raíz)
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edemy.config import settings
from edemy.config.database import check_connections, close_connections, ensure_indexes
from edemy.api.error_handlers import register_error_handlers
from edemy.api.middleware.session_middleware import session_middleware
from edemy.api.routes.auth_routes import router as auth_router
from edemy.api.routes.course_routes import router as course_router
from edemy.api.routes.enrollment_routes import router as enrollment_router
from edemy.api.routes.payment_routes import router as payment_router
from edemy.api.routes.review_routes import router as review_router
from edemy.api.routes.cart_routes import router as cart_router
from edemy.api.routes.wishlist_routes import router as wishlist_router
from edemy.api.routes.stats_routes import router as stats_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except Exception as e:
        logging.warning(f"⚠️ Error inicializando índices: {e}")
    yield
    close_connections()


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION,
              description="Online course marketplace: courses, enrollments, payments and reviews.",
              lifespan=lifespan)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
# Registrar middleware de sesión (Bearer o cookie jwt, sesión en Redis)
app.middleware("http")(session_middleware)


@app.get("/", tags=["Health"])
async def root():
    return {"success": True, "message": f"✅ {settings.APP_NAME} is up and running.",
            "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT}


@app.get("/api/health", tags=["Health"])
def health():
    services = check_connections()
    return {"success": True, "data": {"status": "ok", "services": services}}


app.include_router(auth_router, prefix="/api")
app.include_router(course_router, prefix="/api")
app.include_router(enrollment_router, prefix="/api")
app.include_router(payment_router, prefix="/api")
app.include_router(review_router, prefix="/api")
app.include_router(cart_router, prefix="/api")
app.include_router(wishlist_router, prefix="/api")
app.include_router(stats_router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
