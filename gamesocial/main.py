import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from pythonjsonlogger import jsonlogger

from . import core
from .bridge import InvalidationBridge
from .cache import CacheConfig, SocialCache
from .crud import ProfileStore
from .errors import SocialError
from .loaders import register_social_loaders
from .routes import router
from .service import RelationshipService
from .store import RelationshipStore

# setup structured logging
logger = logging.getLogger('gamesocial')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())


def create_app(session_factory=None, cache_config: CacheConfig = None, redis=None) -> FastAPI:
    """
    Build the API with one cache, service and bridge per process.
    ``redis`` overrides the client the startup hook would connect.
    """
    app = FastAPI(title="GameSocial API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    cache = SocialCache(cache_config or CacheConfig.from_env())
    store = RelationshipStore(session_factory)
    profiles = ProfileStore(session_factory)
    bridge = InvalidationBridge(cache, redis=redis)
    service = RelationshipService(store, cache=cache, notifier=bridge.publish)
    register_social_loaders(cache, service, profiles)

    app.state.cache = cache
    app.state.store = store
    app.state.profiles = profiles
    app.state.bridge = bridge
    app.state.service = service

    app.include_router(router, prefix="/api")

    @app.exception_handler(SocialError)
    async def social_error_handler(request: Request, exc: SocialError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get('/healthz')
    async def healthz():
        return {
            'status': 'ok',
            'cache_entries': len(cache),
            'bridge_connected': bridge.connected,
        }

    @app.middleware('http')
    async def log_requests(request: Request, call_next):
        logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
        response = await call_next(request)
        logger.info({'msg': 'request_end', 'status': response.status_code})
        return response

    @app.on_event("startup")
    async def startup():
        # Best-effort init, don't block app from starting if a dependency fails
        if bridge.redis is None:
            try:
                bridge.redis = await core.redis_startup()
            except Exception as e:
                logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
        try:
            bridge.start()
        except Exception as e:
            logger.warning({'msg': 'bridge_start_failed', 'error': str(e)})
        try:
            core.init_metrics()
        except Exception as e:
            logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})
        cache.start_cleanup()

    @app.on_event("shutdown")
    async def shutdown():
        await bridge.stop()
        await cache.stop_cleanup()
        await core.shutdown_connections()

    return app


app = create_app()
