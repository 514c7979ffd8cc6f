import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx
import structlog
from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

import vidking
from accounts import CredentialStore
from config import Settings
from database import close_database, create_database, init_database
from errors import AuthFailure, MetadataError, StorageError, Unauthorized, ValidationError
from logconfig import setup_logging
from middleware import AuthMiddleware, clear_session_cookie, current_account, require_account, set_session_cookie
from models import Account, MediaKey, ProgressReport
from progress import ProgressTracker
from sessions import SessionManager, run_session_sweeper
from tmdb import TmdbClient, image_url

logger = structlog.get_logger()

HISTORY_PAGE_LIMIT = 50
LOGIN_ERROR = 'Invalid username or password'

templates = Jinja2Templates(directory=str(Path(__file__).parent / 'templates'))
templates.env.globals['image_url'] = image_url

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_progress(request: Request) -> ProgressTracker:
    return request.app.state.progress


def get_tmdb(request: Request) -> TmdbClient:
    return request.app.state.tmdb


def _safe_next(target: Optional[str]) -> str:
    # only same-site paths; "//host" would be protocol-relative
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return '/'


def render(request: Request, name: str, account: Optional[Account], status_code: int = 200, **context) -> HTMLResponse:
    context['account'] = account
    return templates.TemplateResponse(request, name, context, status_code=status_code)


@router.get('/ping')
async def ping():
    return {'status': 'ok'}


# --- session routes ---

@router.get('/login', response_class=HTMLResponse)
async def login_page(request: Request, next_url: Optional[str] = Query(None, alias='next'),
                     account: Optional[Account] = Depends(current_account)):
    return render(request, 'login.html', account, next=_safe_next(next_url))


@router.post('/login')
async def login(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next_url: Optional[str] = Form(None, alias='next'),
    credentials: CredentialStore = Depends(get_credentials),
    sessions: SessionManager = Depends(get_sessions),
    settings: Settings = Depends(get_settings),
):
    try:
        account = await credentials.verify(username, password)
    except AuthFailure as exc:
        logger.info('login_failed', reason=type(exc).__name__)
        return render(request, 'login.html', None, status_code=401, error=LOGIN_ERROR, next=_safe_next(next_url))
    token = await sessions.issue(account.identifier)
    response = RedirectResponse(_safe_next(next_url), status_code=303)
    set_session_cookie(response, token, settings)
    return response


@router.get('/logout')
async def logout(request: Request, sessions: SessionManager = Depends(get_sessions),
                 settings: Settings = Depends(get_settings)):
    await sessions.revoke(getattr(request.state, 'session_token', None))
    response = RedirectResponse('/', status_code=303)
    clear_session_cookie(response, settings)
    return response


# --- watch progress ---

@router.get('/history', response_class=HTMLResponse)
async def history_page(request: Request, account: Account = Depends(require_account),
                       progress: ProgressTracker = Depends(get_progress)):
    history = await progress.list(account.identifier)
    return render(request, 'history.html', account, history=history[:HISTORY_PAGE_LIMIT])


@router.get('/api/history')
async def api_history(account: Account = Depends(require_account),
                      progress: ProgressTracker = Depends(get_progress)):
    return {'results': [p.as_dict() for p in await progress.list(account.identifier)]}


@router.post('/api/progress')
async def api_save_progress(report: ProgressReport, account: Account = Depends(require_account),
                            progress: ProgressTracker = Depends(get_progress)):
    saved = await progress.save(
        account.identifier,
        report.media_key(),
        report.position,
        duration=report.duration,
        completed=report.completed,
        title=report.title,
        poster_path=report.poster_path,
        episode_title=report.episode_title,
    )
    return {'status': 'ok', 'updated_at': saved.updated_at.isoformat()}


@router.delete('/api/progress/{progress_id}')
async def api_remove_progress(progress_id: int, account: Account = Depends(require_account),
                              progress: ProgressTracker = Depends(get_progress)):
    if not await progress.remove(account.identifier, progress_id):
        raise HTTPException(status_code=404, detail='Not found')
    return {'status': 'ok'}


@router.delete('/api/progress')
async def api_clear_progress(account: Account = Depends(require_account),
                             progress: ProgressTracker = Depends(get_progress)):
    return {'status': 'ok', 'removed': await progress.clear(account.identifier)}


# --- pages ---

@router.get('/', response_class=HTMLResponse)
async def home_page(request: Request, account: Optional[Account] = Depends(current_account),
                    tmdb: TmdbClient = Depends(get_tmdb)):
    trending = await tmdb.trending('movie', 'week')
    popular_tv = await tmdb.popular('tv')
    return render(
        request, 'home.html', account,
        trending=trending.get('results', []),
        popular_tv=popular_tv.get('results', []),
        trending_searches=await tmdb.trending_searches(),
    )


@router.get('/search', response_class=HTMLResponse)
async def search_page(
    request: Request,
    q: str = '',
    genre: Optional[str] = None,
    year: Optional[str] = None,
    min_rating: Optional[str] = None,
    sort_by: str = 'popularity.desc',
    account: Optional[Account] = Depends(current_account),
    tmdb: TmdbClient = Depends(get_tmdb),
):
    # empty form fields arrive as "", not missing
    year_n = int(year) if year and year.isdigit() else None
    try:
        rating_n = float(min_rating) if min_rating else None
    except ValueError:
        rating_n = None
    if genre or year_n or rating_n is not None or q.startswith(('genre:', 'actor:', 'director:')):
        results = (await tmdb.discover(q, year=year_n, genre=genre or None, min_rating=rating_n,
                                       sort_by=sort_by)).get('results', [])
    elif len(q.strip()) >= 2:
        results = (await tmdb.search(q)).get('results', [])
    else:
        results = []
    return render(request, 'search.html', account, query=q, results=results, genres=await tmdb.genres())


@router.get('/movie/{tmdb_id}', response_class=HTMLResponse)
async def movie_page(request: Request, tmdb_id: int, account: Optional[Account] = Depends(current_account),
                     tmdb: TmdbClient = Depends(get_tmdb)):
    item = await tmdb.details('movie', tmdb_id)
    return render(request, 'detail.html', account, item=item, media_type='movie')


@router.get('/tv/{tmdb_id}', response_class=HTMLResponse)
async def tv_page(request: Request, tmdb_id: int, account: Optional[Account] = Depends(current_account),
                  tmdb: TmdbClient = Depends(get_tmdb)):
    item = await tmdb.details('tv', tmdb_id)
    return render(request, 'detail.html', account, item=item, media_type='tv')


@router.get('/player/{media_type}/{tmdb_id}', response_class=HTMLResponse)
async def player_page(
    request: Request,
    media_type: str,
    tmdb_id: int,
    season: Optional[int] = None,
    episode: Optional[int] = None,
    account: Optional[Account] = Depends(current_account),
    tmdb: TmdbClient = Depends(get_tmdb),
    progress: ProgressTracker = Depends(get_progress),
):
    if media_type == 'movie':
        key = MediaKey.movie(tmdb_id)
    elif media_type == 'tv':
        if season is None or episode is None:
            raise HTTPException(status_code=400, detail='Season and episode required')
        key = MediaKey.episode_of(tmdb_id, season, episode)
    else:
        raise HTTPException(status_code=404, detail='Not found')

    item = await tmdb.details(media_type, tmdb_id)
    options = vidking.EmbedOptions()
    if account is not None:
        saved = await progress.get(account.identifier, key)
        if saved is not None and not saved.completed:
            options.progress = int(saved.position)

    title = item.get('title') or item.get('name') or ''
    report = {
        'media_type': key.media_type,
        'title_id': tmdb_id,
        'season': season,
        'episode': episode,
        'title': title,
        'poster_path': item.get('poster_path'),
    }
    return render(
        request, 'player.html', account,
        title=title, season=season, episode=episode, report=report, player_origin=vidking.VIDKING_BASE_URL,
        embed=vidking.embed_url(media_type, tmdb_id, season, episode, options),
    )


# --- metadata JSON ---

@router.get('/api/search')
async def api_search(q: str = Query(..., min_length=1), page: int = 1, tmdb: TmdbClient = Depends(get_tmdb)):
    return await tmdb.search(q, page)


@router.get('/api/movies/popular')
async def api_popular_movies(tmdb: TmdbClient = Depends(get_tmdb)):
    return await tmdb.popular('movie')


@router.get('/api/tv/popular')
async def api_popular_tv(tmdb: TmdbClient = Depends(get_tmdb)):
    return await tmdb.popular('tv')


@router.get('/api/trending/{media_type}/{window}')
async def api_trending(media_type: str, window: str, tmdb: TmdbClient = Depends(get_tmdb)):
    try:
        return await tmdb.trending(media_type, window)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get('/api/movie/{tmdb_id}')
async def api_movie(tmdb_id: int, tmdb: TmdbClient = Depends(get_tmdb)):
    return await tmdb.details('movie', tmdb_id)


@router.get('/api/tv/{tmdb_id}')
async def api_tv(tmdb_id: int, tmdb: TmdbClient = Depends(get_tmdb)):
    return await tmdb.details('tv', tmdb_id)


@router.get('/api/movie/{tmdb_id}/streams')
async def api_movie_streams(tmdb_id: int):
    return vidking.streams('movie', tmdb_id)


@router.get('/api/tv/{tmdb_id}/streams')
async def api_tv_streams(tmdb_id: int, season: Optional[int] = None, episode: Optional[int] = None):
    if season is None or episode is None:
        raise HTTPException(status_code=400, detail='Season and episode required')
    return vidking.streams('tv', tmdb_id, season, episode)


def setup_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized):
        if request.url.path.startswith('/api/'):
            return JSONResponse(status_code=401, content={'detail': 'Not authenticated'})
        target = request.url.path + (f'?{request.url.query}' if request.url.query else '')
        return RedirectResponse(f'/login?next={quote(target, safe="/")}', status_code=303)

    @app.exception_handler(ValidationError)
    async def validation_handler(_request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={'detail': exc.detail})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError):
        # raw non-JSON bodies show up as bytes in the error input
        errors = jsonable_encoder(exc.errors())
        return JSONResponse(status_code=422, content={'detail': 'Validation error', 'errors': errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={'detail': exc.detail})

    @app.exception_handler(MetadataError)
    async def metadata_handler(request: Request, exc: MetadataError):
        logger.warning('metadata_unavailable', path=request.url.path, error=str(exc))
        return JSONResponse(status_code=502, content={'detail': 'Metadata provider unavailable'})

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError):
        logger.error('storage_error', path=request.url.path, method=request.method, exc_info=exc)
        return JSONResponse(status_code=500, content={'detail': 'Internal server error'})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error('unhandled_exception', path=request.url.path, method=request.method, exc_info=exc)
        return JSONResponse(status_code=500, content={'detail': 'Internal server error'})


def create_app(settings: Optional[Settings] = None,
               tmdb_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings)

    database = create_database(settings.database_url)
    credentials = CredentialStore(database)
    sessions = SessionManager(database, ttl=timedelta(days=settings.session_ttl_days))
    progress = ProgressTracker(database)
    tmdb = TmdbClient(settings.tmdb_api_key, database, transport=tmdb_transport)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await init_database(database)
        await credentials.ensure_seed_account(settings.seed_admin_username, settings.seed_admin_password)
        sweeper = None
        if settings.session_sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(run_session_sweeper(sessions, settings.session_sweep_interval_seconds))
        logger.info('startup_complete', database=database.url.dialect)

        yield

        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        await tmdb.aclose()
        await close_database(database)

    app = FastAPI(title='couchstream', lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.credentials = credentials
    app.state.sessions = sessions
    app.state.progress = progress
    app.state.tmdb = tmdb

    setup_error_handlers(app)
    app.add_middleware(AuthMiddleware, sessions=sessions, cookie_name=settings.session_cookie_name)
    if settings.allowed_origins:
        # added last -> outermost
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=['*'],
            allow_headers=['*'],
        )
    app.include_router(router)
    return app


if __name__ == '__main__':
    import os

    import uvicorn

    uvicorn.run(create_app(), host=os.getenv('HOST', '127.0.0.1'), port=int(os.getenv('PORT', '8000')))
