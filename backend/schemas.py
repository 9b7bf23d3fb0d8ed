from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from backend.models import TaskPriority, TaskStatus


# ---- Tarefas ----

class TaskIn(BaseModel):
    """
    Dados enviados pelo cliente. Dono e datas nao fazem parte do payload;
    campos extras (user_id, created_at, completed_at) sao ignorados.
    """

    title: str = ""
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    created_at: datetime
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None


class TaskStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    cancelled_tasks: int
    overdue_tasks: int
    high_priority_tasks: int
    completion_rate: float


# ---- Contas ----

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    remember_me: bool = False


class RegisterIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=1)
    confirm_password: str = Field(min_length=1)


class ProfileIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr


class ChangePasswordIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    created_at: datetime
    last_login_at: Optional[datetime] = None
    role_names: List[str] = []


class SessionOut(BaseModel):
    user: ProfileOut
    access_token: str
    token_type: str = "bearer"
    csrf_token: str
    expires_at: datetime


# ---- Admin ----

class UserSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    created_at: datetime
    last_login_at: Optional[datetime] = None
    last_login_display: str
    roles: List[str]
    task_count: int
    is_locked_out: bool


class UserDetailOut(BaseModel):
    user: UserSummaryOut
    tasks: List[TaskOut]


class TaskActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: int
    task_title: str
    user_name: str
    action: str
    timestamp: datetime
    status: TaskStatus


class DashboardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_users: int
    active_users: int
    admin_users: int
    system_task_statistics: TaskStatisticsOut
    recent_users: List[UserSummaryOut]
    recent_task_activity: List[TaskActivityOut]


class EditRolesIn(BaseModel):
    roles: List[str]
