import logging
import time
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from incentive_database.db import SessionLocal
from incentive_database.models import Category, Tag, User

from ..config import get_settings, setup_logging
from ..core import labels, notes, task_writer, users
from ..core.errors import (
    AuthenticationError,
    IncentiveError,
    InfrastructureError,
    PermissionDenied,
)
from ..repository import InMemoryRepository, SqlRepository
from . import schemas

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

# JWT settings
SECRET_KEY = settings.secret_key
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@contextmanager
def open_repository(app):
    """Yields the repository selected by STORAGE_BACKEND."""
    if settings.storage_backend == "memory":
        yield app.state.memory_repository
        return
    db = SessionLocal()
    try:
        yield SqlRepository(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app):
    app.state.memory_repository = (
        InMemoryRepository() if settings.storage_backend == "memory" else None
    )
    logger.info("Starting Incentive API with %s storage", settings.storage_backend)
    if settings.admin_email and settings.admin_password:
        with open_repository(app) as repo:
            users.ensure_admin(repo, settings.admin_email, settings.admin_password)
        logger.info("Admin account %s is available", settings.admin_email)
    yield


# FastAPI app config
app = FastAPI(
    title="Incentive API",
    description="Backend API for notes, tasks, categories and tags.",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Authentication", "description": "User registration, login, and security"},
        {"name": "Users", "description": "Account administration (admin only)"},
        {"name": "Notes", "description": "Create, update, view, delete, search notes"},
        {"name": "Tasks", "description": "Tasks with due dates, priorities, a category and tags"},
        {"name": "Categories", "description": "Single-select task grouping"},
        {"name": "Tags", "description": "Multi-select task labels"},
    ]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# REPOSITORY Dependency
def get_repository(request: Request):
    with open_repository(request.app) as repo:
        yield repo


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Generates JWT access token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta if expires_delta else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), repo=Depends(get_repository)):
    """Decodes JWT and retrieves user from the repository."""
    if not token:
        raise AuthenticationError("Not authenticated.")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Could not validate credentials.")
    user_id = payload.get("sub")
    user = repo.get_user(user_id) if user_id else None
    if user is None:
        raise AuthenticationError("Could not validate credentials.")
    return user


def get_admin_user(current_user: User = Depends(get_current_user)):
    if current_user.role != "ADMIN":
        raise PermissionDenied("Administrator access required.")
    return current_user


#####################
# ERROR HANDLERS
#####################

def _failure(status_code, message, **extra):
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(IncentiveError)
def incentive_error_handler(request, exc):
    response = _failure(exc.status_code, exc.message)
    if isinstance(exc, AuthenticationError):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
def request_validation_handler(request, exc):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "Invalid request."}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return _failure(400, message, errors=errors)


@app.exception_handler(StarletteHTTPException)
def custom_http_exception_handler(request, exc):
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(OperationalError)
def database_unavailable_handler(request, exc):
    logger.error("Database unavailable: %s", exc.orig)
    return _failure(InfrastructureError.status_code, "The database is unavailable at the moment.")


@app.exception_handler(Exception)
def unexpected_error_handler(request, exc):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    extra = {"error": str(exc)} if settings.debug else {}
    return _failure(500, "Internal server error.", **extra)


# Root Health Check
@app.get("/", summary="Health Check", tags=["General"])
def health_check():
    """Simple health check endpoint."""
    return {"message": "Healthy"}


@app.get("/api", summary="API information", tags=["General"])
def api_info():
    """Basic information about the API."""
    return {
        "success": True,
        "message": "Incentive API is running.",
        "storage": settings.storage_backend,
        "routes": ["/api/auth", "/api/users", "/api/notes", "/api/tasks", "/api/categories", "/api/tags"],
    }


#####################
# AUTH ENDPOINTS
#####################

# PUBLIC_INTERFACE
@app.post("/api/auth/register", response_model=schemas.UserEnvelope, status_code=201,
          summary="Register a new user", tags=["Authentication"])
def register(user: schemas.UserCreate, repo=Depends(get_repository)):
    """
    Register a new user.
    Returns the newly created user record (excluding password).
    """
    created = users.register_user(repo, user.name, user.email, user.password)
    return schemas.UserEnvelope(user=schemas.UserOut.model_validate(created))


# PUBLIC_INTERFACE
@app.post("/api/auth/login", response_model=schemas.Token, summary="Login and get JWT token",
          tags=["Authentication"])
def login(form_data: OAuth2PasswordRequestForm = Depends(), repo=Depends(get_repository)):
    """
    User login.
    The form's 'username' field carries the email address. Returns a JWT access token.
    """
    user = users.authenticate_user(repo, form_data.username, form_data.password)
    access_token = create_access_token(data={"sub": user.id})
    return schemas.Token(
        access_token=access_token,
        token_type="bearer",
        user=schemas.UserOut.model_validate(user),
    )


# PUBLIC_INTERFACE
@app.get("/api/auth/me", response_model=schemas.UserEnvelope, summary="Get current user profile",
         tags=["Authentication"])
def get_profile(current_user: User = Depends(get_current_user)):
    """
    Get details about the current authed user.
    """
    return schemas.UserEnvelope(user=schemas.UserOut.model_validate(current_user))


#####################
# USER ADMINISTRATION
#####################

# PUBLIC_INTERFACE
@app.get("/api/users", response_model=schemas.UsersEnvelope, summary="List users", tags=["Users"])
def list_users(repo=Depends(get_repository), admin: User = Depends(get_admin_user)):
    """List every account, oldest first. Admin only."""
    return schemas.UsersEnvelope(users=[schemas.UserOut.model_validate(u) for u in repo.list_users()])


# PUBLIC_INTERFACE
@app.get("/api/users/{user_id}", response_model=schemas.UserEnvelope, summary="Get a user", tags=["Users"])
def get_user(user_id: str, repo=Depends(get_repository), admin: User = Depends(get_admin_user)):
    """Get one account by id. Admin only."""
    return schemas.UserEnvelope(user=schemas.UserOut.model_validate(users.get_user(repo, user_id)))


# PUBLIC_INTERFACE
@app.put("/api/users/{user_id}", response_model=schemas.UserEnvelope, summary="Update a user", tags=["Users"])
def update_user(user_id: str, user_update: schemas.UserUpdate, repo=Depends(get_repository),
                admin: User = Depends(get_admin_user)):
    """Update name, email or role of an account. Admin only."""
    updated = users.update_user(repo, user_id, user_update.model_dump(exclude_unset=True))
    return schemas.UserEnvelope(user=schemas.UserOut.model_validate(updated))


# PUBLIC_INTERFACE
@app.delete("/api/users/{user_id}", response_model=schemas.Envelope, summary="Delete a user", tags=["Users"])
def delete_user(user_id: str, repo=Depends(get_repository), admin: User = Depends(get_admin_user)):
    """Delete an account and everything it owns. Admin only."""
    users.delete_user(repo, user_id)
    return schemas.Envelope(message="User deleted.")


#####################
# NOTES ENDPOINTS
#####################

# PUBLIC_INTERFACE
@app.post("/api/notes", response_model=schemas.NoteEnvelope, status_code=201, summary="Create a new note",
          tags=["Notes"])
def create_note(note: schemas.NoteCreate, repo=Depends(get_repository),
                current_user: User = Depends(get_current_user)):
    """
    Create a new note for the authenticated user.
    """
    created = notes.create_note(repo, current_user.id, note.model_dump())
    return schemas.NoteEnvelope(note=schemas.NoteOut.model_validate(created))


# PUBLIC_INTERFACE
@app.get("/api/notes", response_model=schemas.NotesEnvelope, summary="List all user notes", tags=["Notes"])
def list_notes(
    q: Optional[str] = Query(None, description="Search term for note title or content"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    repo=Depends(get_repository),
    current_user: User = Depends(get_current_user)
):
    """
    Get all notes for the authenticated user, pinned first.
    Supports filtering by search term (on title or content).
    """
    found = notes.list_notes(repo, current_user.id, q=q, skip=skip, limit=limit)
    return schemas.NotesEnvelope(notes=[schemas.NoteOut.model_validate(n) for n in found])


# PUBLIC_INTERFACE
@app.get("/api/notes/{note_id}", response_model=schemas.NoteEnvelope, summary="Get a single note",
         tags=["Notes"])
def get_note(note_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """
    Retrieve a single note belonging to the authenticated user.
    """
    note = notes.get_note(repo, current_user.id, note_id)
    return schemas.NoteEnvelope(note=schemas.NoteOut.model_validate(note))


# PUBLIC_INTERFACE
@app.put("/api/notes/{note_id}", response_model=schemas.NoteEnvelope, summary="Update a note", tags=["Notes"])
def update_note(note_id: str, note_update: schemas.NoteUpdate, repo=Depends(get_repository),
                current_user: User = Depends(get_current_user)):
    """
    Update a note belonging to the authenticated user. Omitted fields are kept.
    """
    note = notes.update_note(repo, current_user.id, note_id, note_update.model_dump(exclude_unset=True))
    return schemas.NoteEnvelope(note=schemas.NoteOut.model_validate(note))


# PUBLIC_INTERFACE
@app.delete("/api/notes/{note_id}", response_model=schemas.Envelope, summary="Delete a note", tags=["Notes"])
def delete_note(note_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """
    Delete a note belonging to the authenticated user.
    """
    notes.delete_note(repo, current_user.id, note_id)
    return schemas.Envelope(message="Note deleted.")


#####################
# CATEGORY AND TAG ENDPOINTS
#####################

def _label_out(label):
    return schemas.LabelOut.model_validate(label)


def _tasks_out(tasks):
    return [schemas.TaskOut.model_validate(t) for t in tasks]


# PUBLIC_INTERFACE
@app.get("/api/categories", response_model=schemas.CategoriesEnvelope, summary="List categories",
         tags=["Categories"])
def list_categories(repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """List the caller's categories, ordered by name."""
    found = labels.list_labels(repo, Category, current_user.id)
    return schemas.CategoriesEnvelope(categories=[_label_out(c) for c in found])


# PUBLIC_INTERFACE
@app.post("/api/categories", response_model=schemas.CategoryEnvelope, status_code=201,
          summary="Create a category", tags=["Categories"])
def create_category(category: schemas.LabelCreate, repo=Depends(get_repository),
                    current_user: User = Depends(get_current_user)):
    """Create a category. Color defaults to #6200ee."""
    created = labels.create_label(repo, Category, current_user.id, category.model_dump())
    return schemas.CategoryEnvelope(category=_label_out(created))


# PUBLIC_INTERFACE
@app.get("/api/categories/{category_id}", response_model=schemas.CategoryEnvelope,
         summary="Get a category", tags=["Categories"])
def get_category(category_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Get one of the caller's categories."""
    return schemas.CategoryEnvelope(category=_label_out(labels.get_label(repo, Category, current_user.id, category_id)))


# PUBLIC_INTERFACE
@app.put("/api/categories/{category_id}", response_model=schemas.CategoryEnvelope,
         summary="Update a category", tags=["Categories"])
def update_category(category_id: str, category_update: schemas.LabelUpdate, repo=Depends(get_repository),
                    current_user: User = Depends(get_current_user)):
    """Update a category. Omitted fields are kept."""
    updated = labels.update_label(repo, Category, current_user.id, category_id,
                                  category_update.model_dump(exclude_unset=True))
    return schemas.CategoryEnvelope(category=_label_out(updated))


# PUBLIC_INTERFACE
@app.delete("/api/categories/{category_id}", response_model=schemas.Envelope,
            summary="Delete a category and detach its tasks", tags=["Categories"])
def delete_category(category_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Delete a category. Its tasks are kept with no category."""
    labels.delete_label(repo, Category, current_user.id, category_id)
    return schemas.Envelope(message="Category deleted.")


# PUBLIC_INTERFACE
@app.get("/api/categories/{category_id}/tasks", response_model=schemas.TasksEnvelope,
         summary="Tasks in a category", tags=["Categories"])
def category_tasks(category_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """List the caller's tasks in this category."""
    return schemas.TasksEnvelope(tasks=_tasks_out(labels.label_tasks(repo, Category, current_user.id, category_id)))


# PUBLIC_INTERFACE
@app.get("/api/tags", response_model=schemas.TagsEnvelope, summary="List tags", tags=["Tags"])
def list_tags(repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """List the caller's tags, ordered by name."""
    return schemas.TagsEnvelope(tags=[_label_out(t) for t in labels.list_labels(repo, Tag, current_user.id)])


# PUBLIC_INTERFACE
@app.post("/api/tags", response_model=schemas.TagEnvelope, status_code=201, summary="Create a tag", tags=["Tags"])
def create_tag(tag: schemas.LabelCreate, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Create a tag. Color defaults to #03DAC5."""
    created = labels.create_label(repo, Tag, current_user.id, tag.model_dump())
    return schemas.TagEnvelope(tag=_label_out(created))


# PUBLIC_INTERFACE
@app.get("/api/tags/{tag_id}", response_model=schemas.TagEnvelope, summary="Get a tag", tags=["Tags"])
def get_tag(tag_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Get one of the caller's tags."""
    return schemas.TagEnvelope(tag=_label_out(labels.get_label(repo, Tag, current_user.id, tag_id)))


# PUBLIC_INTERFACE
@app.put("/api/tags/{tag_id}", response_model=schemas.TagEnvelope, summary="Update a tag", tags=["Tags"])
def update_tag(tag_id: str, tag_update: schemas.LabelUpdate, repo=Depends(get_repository),
               current_user: User = Depends(get_current_user)):
    """Update a tag. Omitted fields are kept."""
    updated = labels.update_label(repo, Tag, current_user.id, tag_id, tag_update.model_dump(exclude_unset=True))
    return schemas.TagEnvelope(tag=_label_out(updated))


# PUBLIC_INTERFACE
@app.delete("/api/tags/{tag_id}", response_model=schemas.Envelope, summary="Delete a tag and unlink it from tasks",
            tags=["Tags"])
def delete_tag(tag_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Delete a tag after unlinking it from every task."""
    labels.delete_label(repo, Tag, current_user.id, tag_id)
    return schemas.Envelope(message="Tag deleted.")


# PUBLIC_INTERFACE
@app.get("/api/tags/{tag_id}/tasks", response_model=schemas.TasksEnvelope, summary="Tasks carrying a tag",
         tags=["Tags"])
def tag_tasks(tag_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """List the caller's tasks carrying this tag."""
    return schemas.TasksEnvelope(tasks=_tasks_out(labels.label_tasks(repo, Tag, current_user.id, tag_id)))


#####################
# TASK ENDPOINTS
#####################

def _task_envelope(task, message=None):
    return schemas.TaskEnvelope(task=schemas.TaskOut.model_validate(task), message=message)


# PUBLIC_INTERFACE
@app.get("/api/tasks", response_model=schemas.TasksEnvelope, summary="List tasks", tags=["Tasks"])
def list_tasks(
    completed: Optional[bool] = Query(None),
    priority: Optional[schemas.Priority] = Query(None),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    tag_id: Optional[str] = Query(None, alias="tagId"),
    repo=Depends(get_repository),
    current_user: User = Depends(get_current_user)
):
    """
    Incomplete tasks first, then by due date (undated last), then most recently updated.
    """
    found = task_writer.list_tasks(repo, current_user.id, completed=completed, priority=priority,
                                   category_id=category_id, tag_id=tag_id)
    return schemas.TasksEnvelope(tasks=_tasks_out(found))


# PUBLIC_INTERFACE
@app.post("/api/tasks", response_model=schemas.TaskEnvelope, status_code=201, summary="Create a task",
          tags=["Tasks"])
def create_task(task: schemas.TaskCreate, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """
    Create a task. The category and every tag must belong to the caller, otherwise
    nothing is created.
    """
    created = task_writer.create_task(repo, current_user.id, task.model_dump())
    return _task_envelope(created)


# PUBLIC_INTERFACE
@app.get("/api/tasks/{task_id}", response_model=schemas.TaskEnvelope, summary="Get a task", tags=["Tasks"])
def get_task(task_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Get one of the caller's tasks with its category and tags."""
    return _task_envelope(task_writer.get_task(repo, current_user.id, task_id))


# PUBLIC_INTERFACE
@app.put("/api/tasks/{task_id}", response_model=schemas.TaskEnvelope, summary="Update a task", tags=["Tasks"])
def update_task(task_id: str, task_update: schemas.TaskUpdate, repo=Depends(get_repository),
                current_user: User = Depends(get_current_user)):
    """
    Partial update. ``categoryId: null`` detaches the category; ``tagIds`` replaces the
    whole tag set.
    """
    updated = task_writer.update_task(repo, current_user.id, task_id, task_update.model_dump(exclude_unset=True))
    return _task_envelope(updated)


# PUBLIC_INTERFACE
@app.delete("/api/tasks/{task_id}", response_model=schemas.Envelope, summary="Delete a task", tags=["Tasks"])
def delete_task(task_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Delete a task. Its category and tags are kept."""
    task_writer.delete_task(repo, current_user.id, task_id)
    return schemas.Envelope(message="Task deleted.")


# PUBLIC_INTERFACE
@app.patch("/api/tasks/{task_id}/toggle-complete", response_model=schemas.TaskEnvelope,
           summary="Flip a task's completed flag", tags=["Tasks"])
def toggle_task(task_id: str, repo=Depends(get_repository), current_user: User = Depends(get_current_user)):
    """Flip the stored completed flag."""
    return _task_envelope(task_writer.toggle_complete(repo, current_user.id, task_id))


# PUBLIC_INTERFACE
@app.post("/api/tasks/{task_id}/tags/{tag_id}", response_model=schemas.TaskEnvelope,
          summary="Attach a tag to a task", tags=["Tasks"])
def add_task_tag(task_id: str, tag_id: str, repo=Depends(get_repository),
                 current_user: User = Depends(get_current_user)):
    """Attach a tag. Attaching it again succeeds and changes nothing."""
    task, added = task_writer.add_tag(repo, current_user.id, task_id, tag_id)
    return _task_envelope(task, None if added else "Tag is already attached to this task.")


# PUBLIC_INTERFACE
@app.delete("/api/tasks/{task_id}/tags/{tag_id}", response_model=schemas.TaskEnvelope,
            summary="Detach a tag from a task", tags=["Tasks"])
def remove_task_tag(task_id: str, tag_id: str, repo=Depends(get_repository),
                    current_user: User = Depends(get_current_user)):
    """Detach a tag. 404 when the tag is not attached."""
    return _task_envelope(task_writer.remove_tag(repo, current_user.id, task_id, tag_id))
