import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import RedirectResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from backend import accounts, admin, auth, task_service
from backend.cache.redis_client import is_cache_available, redis_client
from backend.config import get_settings
from backend.db import get_db
from backend.init_db import init_db
from backend.logging_setup import setup_logging
from backend.models import TaskPriority, TaskStatus, User
from backend.results import ErrorKind, ServiceResult
from backend.schemas import (
    ChangePasswordIn,
    DashboardOut,
    EditRolesIn,
    LoginIn,
    ProfileIn,
    ProfileOut,
    RegisterIn,
    SessionOut,
    TaskIn,
    TaskOut,
    TaskStatisticsOut,
    UserDetailOut,
    UserSummaryOut,
)


logger = logging.getLogger(__name__)
settings = get_settings()

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
CSRF_HEADER = "X-CSRF-Token"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/account/login", auto_error=False)

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.UNEXPECTED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---- Sessao e autorizacao ----

def get_session_token(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
) -> Tuple[Optional[str], bool]:
    """
    Retorna (token, veio_do_cookie). O header Authorization tem prioridade.
    """
    if bearer:
        return bearer, False
    return request.cookies.get(settings.session_cookie_name), True


def verify_csrf(
    request: Request,
    session_token: Tuple[Optional[str], bool] = Depends(get_session_token),
) -> None:
    """Requisicoes que alteram estado com sessao em cookie precisam do token anti-CSRF."""
    if request.method in SAFE_METHODS:
        return

    token, from_cookie = session_token
    if not token or not from_cookie:
        return

    claims = auth.decode_session(token)
    if claims is None:
        return

    sent = request.headers.get(CSRF_HEADER, "")
    if not sent or not secrets.compare_digest(sent, claims.csrf_token):
        raise HTTPException(status_code=403, detail="Invalid anti-forgery token.")


def get_optional_user(
    session_token: Tuple[Optional[str], bool] = Depends(get_session_token),
    db: Session = Depends(get_db),
) -> Optional[User]:
    token, _ = session_token
    if not token:
        return None
    return auth.resolve_session(db, token)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return user


def raise_for_result(result: ServiceResult) -> None:
    if result.success:
        return
    detail = result.errors if len(result.errors) > 1 else result.message
    raise HTTPException(status_code=ERROR_STATUS[result.error], detail=detail)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_dir)
    init_db()
    yield


app = FastAPI(title="Task Manager API", lifespan=lifespan, dependencies=[Depends(verify_csrf)])


# ---- Cache ----

def parse_status_param(raw_status: Optional[str]) -> Optional[TaskStatus]:
    """
    Valida o status vindo da query string. Aceita 'all' como sem filtro.
    """
    if raw_status is None:
        return None

    normalized = raw_status.strip().lower()
    if normalized in ("", "all"):
        return None

    for option in TaskStatus:
        if option.value.lower() == normalized:
            return option

    valid_list = ", ".join(s.value for s in TaskStatus)
    raise HTTPException(status_code=400, detail=f"Invalid status. Use: {valid_list}.")


def parse_priority_param(raw_priority: Optional[str]) -> Optional[TaskPriority]:
    if raw_priority is None:
        return None

    normalized = raw_priority.strip().lower()
    if normalized in ("", "all"):
        return None

    for option in TaskPriority:
        if option.value.lower() == normalized:
            return option

    valid_list = ", ".join(p.value for p in TaskPriority)
    raise HTTPException(status_code=400, detail=f"Invalid priority. Use: {valid_list}.")


def tasks_cache_key(user_id: str, task_status: Optional[TaskStatus]) -> str:
    status_key = task_status.value if task_status else "all"
    return f"tasks:user:{user_id}:status:{status_key}"


def invalidate_task_cache_for_user(user_id: str) -> None:
    """
    Remove todas as variacoes de cache de tarefas de um usuario.
    """
    if not redis_client:
        return

    keys = [tasks_cache_key(user_id, None)] + [tasks_cache_key(user_id, s) for s in TaskStatus]
    try:
        redis_client.delete(*keys)
    except Exception:
        # Cache e opcional; erro de cache nao derruba a API.
        logger.warning("Could not invalidate task cache for user %s", user_id, exc_info=True)


def cached_user_tasks(db: Session, user: User, task_status: Optional[TaskStatus]) -> list:
    cache_key = tasks_cache_key(user.id, task_status)

    if redis_client:
        try:
            cached_tasks = redis_client.get(cache_key)
            if cached_tasks:
                return json.loads(cached_tasks)
        except Exception:
            logger.warning("Could not read task cache %s", cache_key, exc_info=True)

    if task_status is None:
        tasks = task_service.get_user_tasks(db, user.id)
    else:
        tasks = task_service.get_tasks_by_status(db, task_status, user.id)
    serialized = jsonable_encoder([TaskOut.model_validate(t) for t in tasks])

    if redis_client:
        try:
            redis_client.setex(cache_key, settings.cache_ttl_seconds, json.dumps(serialized))
        except Exception:
            logger.warning("Could not write task cache %s", cache_key, exc_info=True)

    return serialized


# ---- Paginas basicas ----

@app.get("/")
def home(user: Optional[User] = Depends(get_optional_user)):
    return {
        "app": "Task Manager",
        "authenticated": user is not None,
        "user": user.email if user else None,
    }


@app.get("/cache/ping")
def cache_ping(_: User = Depends(require_admin)):
    """Verifica disponibilidade do Redis."""
    return {"redis_available": is_cache_available()}


# ---- Contas ----

def _session_response(response: Response, signed_in: accounts.SignedIn) -> SessionOut:
    session = signed_in.session
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        httponly=True,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
    )
    return SessionOut(
        user=ProfileOut.model_validate(signed_in.user),
        access_token=session.token,
        csrf_token=session.csrf_token,
        expires_at=session.expires_at,
    )


@app.post("/account/login", response_model=SessionOut)
def login(
    data: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    current: Optional[User] = Depends(get_optional_user),
):
    if current is not None:
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)

    result = accounts.login(db, str(data.email), data.password)
    if not result.success and result.error == ErrorKind.VALIDATION:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.message)
    raise_for_result(result)
    return _session_response(response, result.value)


@app.post("/account/register", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterIn,
    response: Response,
    db: Session = Depends(get_db),
    current: Optional[User] = Depends(get_optional_user),
):
    if current is not None:
        return RedirectResponse("/", status_code=status.HTTP_303_SEE_OTHER)

    result = accounts.register(db, data)
    raise_for_result(result)
    return _session_response(response, result.value)


@app.post("/account/logout")
def logout(
    response: Response,
    session_token: Tuple[Optional[str], bool] = Depends(get_session_token),
    db: Session = Depends(get_db),
):
    token, _ = session_token
    accounts.logout(db, token)
    response.delete_cookie(settings.session_cookie_name)
    return {"detail": "Logged out."}


@app.get("/account/profile", response_model=ProfileOut)
def get_profile(user: User = Depends(get_current_user)):
    return user


@app.post("/account/profile", response_model=ProfileOut)
def update_profile(data: ProfileIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = accounts.update_profile(db, user, data)
    raise_for_result(result)
    return result.value


@app.post("/account/password")
def change_password(
    data: ChangePasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = accounts.change_password(db, user, data)
    raise_for_result(result)
    return {"detail": "Password changed."}


@app.get("/account/access-denied")
def access_denied():
    return {"detail": "You do not have access to this resource."}


# ---- Tarefas ----

def _filtered_tasks(
    db: Session,
    user: User,
    is_admin: bool,
    task_status: Optional[TaskStatus],
    priority: Optional[TaskPriority],
    q: Optional[str],
) -> list:
    if q:
        tasks = task_service.search_tasks(db, q, user.id, is_admin)
    elif priority is not None:
        tasks = task_service.get_tasks_by_priority(db, priority, user.id, is_admin)
    elif task_status is not None:
        tasks = task_service.get_tasks_by_status(db, task_status, user.id, is_admin)
    else:
        tasks = task_service.get_all_tasks(db) if is_admin else task_service.get_user_tasks(db, user.id)

    # Busca e prioridade podem ser combinadas com status.
    if task_status is not None:
        tasks = [t for t in tasks if t.status == task_status]
    if priority is not None:
        tasks = [t for t in tasks if t.priority == priority]
    return tasks


@app.get("/tasks", response_model=List[TaskOut])
def list_tasks(
    status_param: Optional[str] = Query(None, alias="status", description="Pending|InProgress|Completed|Cancelled|all"),
    priority: Optional[str] = Query(None, description="Low|Medium|High|Critical|all"),
    q: Optional[str] = Query(None, description="Texto no titulo ou descricao"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task_status = parse_status_param(status_param)
    task_priority = parse_priority_param(priority)

    if not q and task_priority is None:
        return cached_user_tasks(db, user, task_status)

    return _filtered_tasks(db, user, False, task_status, task_priority, q)


@app.get("/tasks/statistics", response_model=TaskStatisticsOut)
def my_statistics(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return TaskStatisticsOut.model_validate(task_service.get_user_statistics(db, user.id))


@app.get("/tasks/{task_id}", response_model=TaskOut)
def get_task(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task = task_service.get_task_by_id(db, task_id, user.id, user.is_admin)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found.")
    return task


@app.post("/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(task_in: TaskIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = task_service.create_task(db, task_in, user.id)
    raise_for_result(result)
    invalidate_task_cache_for_user(user.id)
    return result.value


@app.put("/tasks/{task_id}", response_model=TaskOut)
def update_task(
    task_id: int,
    task_in: TaskIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = task_service.update_task(db, task_id, task_in, user.id, user.is_admin)
    raise_for_result(result)
    invalidate_task_cache_for_user(result.value.user_id)
    return result.value


@app.delete("/tasks/{task_id}")
def delete_task(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = task_service.delete_task(db, task_id, user.id, user.is_admin)
    raise_for_result(result)
    invalidate_task_cache_for_user(result.value)
    return {"detail": "Task deleted."}


@app.post("/tasks/{task_id}/complete", response_model=TaskOut)
def mark_completed(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = task_service.mark_task_completed(db, task_id, user.id)
    raise_for_result(result)
    invalidate_task_cache_for_user(user.id)
    return result.value


@app.post("/tasks/{task_id}/start", response_model=TaskOut)
def mark_in_progress(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = task_service.mark_task_in_progress(db, task_id, user.id)
    raise_for_result(result)
    invalidate_task_cache_for_user(user.id)
    return result.value


# ---- Admin ----

@app.get("/admin/dashboard", response_model=DashboardOut)
def dashboard(db: Session = Depends(get_db), _: User = Depends(require_admin)):
    return DashboardOut.model_validate(admin.build_dashboard(db, settings.active_user_days))


@app.get("/admin/tasks", response_model=List[TaskOut])
def admin_tasks(
    status_param: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    return _filtered_tasks(
        db,
        user,
        True,
        parse_status_param(status_param),
        parse_priority_param(priority),
        q,
    )


@app.get("/admin/users", response_model=List[UserSummaryOut])
def admin_users(q: Optional[str] = Query(None), db: Session = Depends(get_db), _: User = Depends(require_admin)):
    return [UserSummaryOut.model_validate(u) for u in admin.list_users(db, q)]


@app.get("/admin/users/{user_id}", response_model=UserDetailOut)
def admin_user_detail(user_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    detail = admin.get_user_detail(db, user_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="User not found.")
    summary, tasks = detail
    return UserDetailOut(
        user=UserSummaryOut.model_validate(summary),
        tasks=[TaskOut.model_validate(t) for t in tasks],
    )


@app.put("/admin/users/{user_id}/roles", response_model=UserSummaryOut)
def admin_edit_roles(
    user_id: str,
    data: EditRolesIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    result = admin.edit_user_roles(db, user_id, data.roles, user.id)
    raise_for_result(result)
    return UserSummaryOut.model_validate(result.value)


@app.delete("/admin/users/{user_id}")
def admin_delete_user(user_id: str, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    result = admin.delete_user(db, user_id, user.id)
    raise_for_result(result)
    invalidate_task_cache_for_user(user_id)
    return {"detail": "User deleted."}
