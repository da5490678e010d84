"""HTTP API for the launcher daemon."""

from aiohttp import web
from loguru import logger

from .error_handling import StoreError
from .models import AppInfo, Candidate


def create_api_app(daemon) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application()
    app['daemon'] = daemon

    app.router.add_get('/search', handle_search)
    app.router.add_post('/launch', handle_launch)
    app.router.add_get('/history', handle_get_history)
    app.router.add_post('/history/refresh', handle_refresh_history)
    app.router.add_delete('/history', handle_delete_history)
    app.router.add_post('/apps', handle_index_app)
    app.router.add_get('/status', handle_status)
    app.router.add_post('/shutdown', handle_shutdown)

    # CORS for a local UI shell
    @web.middleware
    async def cors_middleware(request, handler):
        response = await handler(request)
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return response

    app.middlewares.append(cors_middleware)

    return app


def error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({'error': {'code': code, 'message': message}}, status=status)


async def handle_search(request: web.Request) -> web.Response:
    """Rank candidates for ?q= (empty query lists history)."""
    daemon = request.app['daemon']

    query = request.query.get('q', '')
    try:
        limit = int(request.query.get('limit', daemon.config.search.max_results))
    except ValueError:
        return error_response('invalid_request', 'limit must be an integer', 400)
    if limit < 1:
        return error_response('invalid_request', 'limit must be positive', 400)

    try:
        results = await daemon.orchestrator.search(query, limit=limit)
    except Exception as e:
        logger.error(f"Search error: {e}")
        return error_response('internal_error', str(e), 500)

    return web.json_response({
        'query': query,
        'results': [r.to_dict() for r in results],
    })


async def handle_launch(request: web.Request) -> web.Response:
    """Launch a candidate, given inline or as an index into the last results."""
    daemon = request.app['daemon']

    try:
        data = await request.json()
    except ValueError:
        return error_response('invalid_request', 'body must be JSON', 400)
    if not isinstance(data, dict):
        return error_response('invalid_request', 'body must be a JSON object', 400)

    query = data.get('query') or daemon.orchestrator.last_query
    if 'index' in data:
        results = daemon.orchestrator.results.results
        index = data['index']
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(results):
            return error_response('invalid_request', f'no result at index {index!r}', 404)
        candidate = results[index].candidate
    else:
        try:
            candidate = Candidate.from_dict(data.get('candidate') or data)
        except (KeyError, TypeError, ValueError) as e:
            return error_response('invalid_request', f'invalid candidate: {e}', 400)

    outcome = await daemon.dispatcher.launch(candidate, query)
    return web.json_response(outcome.to_dict())


async def handle_get_history(request: web.Request) -> web.Response:
    daemon = request.app['daemon']
    entries = daemon.history.entries()
    return web.json_response({
        'loaded': daemon.history.is_loaded,
        'pending': list(daemon.history.pending_keys()),
        'entries': [e.to_dict() for e in entries],
    })


async def handle_refresh_history(request: web.Request) -> web.Response:
    """Retry deferred uses and reconcile with the store."""
    daemon = request.app['daemon']
    reconciled = await daemon.worker.refresh()
    return web.json_response({
        'reconciled': reconciled,
        'count': len(daemon.history),
    })


async def handle_delete_history(request: web.Request) -> web.Response:
    daemon = request.app['daemon']

    path = request.query.get('path')
    if not path:
        return error_response('invalid_request', 'query parameter path is required', 400)

    daemon.orchestrator.results.prune(path)
    try:
        await daemon.history.remove_entry(path)
    except StoreError as e:
        return error_response('not_found', str(e), 404)

    return web.json_response({'status': 'removed', 'path': path})


async def handle_index_app(request: web.Request) -> web.Response:
    """Add or replace an application in the index."""
    daemon = request.app['daemon']

    try:
        data = await request.json()
    except ValueError:
        return error_response('invalid_request', 'body must be JSON', 400)

    name = data.get('name') if isinstance(data, dict) else None
    path = data.get('path') if isinstance(data, dict) else None
    if not name or not path:
        return error_response('invalid_request', 'name and path are required', 400)

    app_info = AppInfo(
        name=name,
        path=path,
        icon=data.get('icon'),
        name_pinyin=data.get('name_pinyin'),
        name_pinyin_initials=data.get('name_pinyin_initials'),
    )
    try:
        await daemon.store.upsert_app(app_info)
    except StoreError as e:
        logger.error(f"Index error: {e}")
        return error_response('store_error', str(e), 500)

    count = await daemon.orchestrator.refresh_apps()
    return web.json_response({'status': 'indexed', 'apps': count}, status=201)


async def handle_status(request: web.Request) -> web.Response:
    """Get daemon status."""
    daemon = request.app['daemon']

    try:
        return web.json_response(daemon.get_status())
    except Exception as e:
        logger.error(f"Status error: {e}")
        return error_response('internal_error', str(e), 500)


async def handle_shutdown(request: web.Request) -> web.Response:
    """Shutdown the daemon once the response is sent."""
    daemon = request.app['daemon']
    logger.info("Shutdown requested via API")
    daemon.request_shutdown()
    return web.json_response({'status': 'shutting down'})
