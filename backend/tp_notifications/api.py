from typing import List
from contextlib import asynccontextmanager
import logging
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, status, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import auth, dispatch, metrics, models, schemas, subscriptions, tracking
from .config import settings
from .database import engine, get_db
from .errors import INTERNAL_ERROR_CONTENT, NotificationError, NotificationNotFoundError
from .logging_utils import configure_logging, RequestIdMiddleware, log_event, log_warning
from .push_service import effective_delivery_mode

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config
        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / 'alembic.ini'
        if not alembic_ini.exists():
            logging.warning('alembic.ini not found; skipping migrations')
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option('script_location', str(base_dir / 'alembic'))
        command.upgrade(cfg, 'head')
        logging.info('Migrations applied to head')
    except Exception:
        logging.exception('Failed to run migrations on startup')


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is required')
    if not settings.secret_key:
        raise RuntimeError('SECRET_KEY is required')
    if settings.push_delivery_mode == "webpush" and effective_delivery_mode() == "log":
        logging.warning('PUSH_DELIVERY_MODE=webpush but VAPID_PRIVATE_KEY is missing; pushes will only be logged')


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if getattr(settings, "auto_run_migrations", False):
        _run_migrations()
    elif settings.auto_create_tables:
        models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="TP Notifications API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _raise_http(exc: NotificationError):
    if isinstance(exc, NotificationNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc


# ===================== AUTH =====================


@app.post("/register", response_model=schemas.Token)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    email = user.email.lower()
    db_user = db.query(models.User).filter(models.User.email == email).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Cet email est déjà utilisé.")

    new_user = models.User(
        email=email,
        password_hash=auth.get_password_hash(user.password),
        role=models.UserRole.user,
        availability_alerts_enabled=True,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    log_event("user_registered", user_id=new_user.id, email=new_user.email)
    return auth.issue_tokens(new_user)


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(models.User.email == user_credentials.email.lower()).first()
    if not user or not auth.verify_password(user_credentials.password, user.password_hash):
        log_warning("login_failed", email=user_credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou mot de passe incorrect",
            headers={"WWW-Authenticate": "Bearer"},
        )
    log_event("login_success", user_id=user.id, email=user.email, role=user.role.value)
    return auth.issue_tokens(user)


@app.post("/refresh", response_model=schemas.Token)
def refresh_token(payload: schemas.RefreshRequest, db: Session = Depends(get_db)):
    try:
        decoded = auth.jwt.decode(payload.refresh_token, settings.secret_key, algorithms=[settings.algorithm])
    except auth.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Jeton de rafraîchissement expiré.")
    except auth.JWTError:
        raise HTTPException(status_code=401, detail="Jeton de rafraîchissement invalide.")

    if decoded.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Jeton de rafraîchissement invalide.")

    user_id = decoded.get("sub")
    user = None
    if user_id is not None and str(user_id).isdigit():
        user = db.query(models.User).filter(models.User.id == int(user_id)).first()
    if user is None:
        raise HTTPException(status_code=401, detail="Jeton de rafraîchissement invalide.")
    return auth.issue_tokens(user)


@app.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@app.get("/api/me/preferences", response_model=schemas.PreferencesResponse)
def get_preferences(current_user: models.User = Depends(auth.get_current_user)):
    return {"availability_alerts_enabled": bool(current_user.availability_alerts_enabled)}


@app.put("/api/me/preferences", response_model=schemas.PreferencesResponse)
def update_preferences(
    payload: schemas.PreferencesUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    current_user.availability_alerts_enabled = payload.availability_alerts_enabled
    db.add(current_user)
    db.commit()
    db.refresh(current_user)
    log_event(
        "preferences_updated",
        user_id=current_user.id,
        availability_alerts_enabled=current_user.availability_alerts_enabled,
    )
    return {"availability_alerts_enabled": current_user.availability_alerts_enabled}


@app.get("/")
def read_root():
    return {"message": "Hello from TP Notifications API!"}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Erreur"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    message = "Requête invalide."
    log_warning("request_validation_failed", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": {"code": "http_400", "message": message}, "detail": message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger("tp_notifications").exception("unhandled_error path=%s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=INTERNAL_ERROR_CONTENT,
    )


# ===================== PUSH SUBSCRIPTIONS =====================


@app.get("/api/push/vapid-public-key", response_model=schemas.VapidPublicKeyResponse)
def get_vapid_public_key():
    return {"public_key": settings.vapid_public_key}


@app.post(
    "/api/push/subscribe",
    response_model=schemas.SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
def subscribe(
    payload: schemas.PushSubscriptionCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    subscription, created = subscriptions.register_subscription(db, current_user, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
        return {"message": "Abonnement déjà enregistré.", "id": subscription.id}
    return {"message": "Abonnement enregistré.", "id": subscription.id}


@app.delete("/api/push/unsubscribe", response_model=schemas.MessageResponse)
def unsubscribe(
    payload: schemas.PushSubscriptionDelete,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if not subscriptions.remove_subscription(db, current_user, payload.endpoint):
        raise HTTPException(status_code=404, detail="Abonnement introuvable.")
    return {"message": "Abonnement supprimé."}


# ===================== TRACKING =====================


@app.post("/api/notifications/track-click", response_model=schemas.MessageResponse)
def track_click(payload: schemas.TrackClickRequest, db: Session = Depends(get_db)):
    tracking.mark_clicked(db, payload.notification_id, payload.user_id)
    return {"message": "Clic enregistré."}


@app.post("/api/notifications/track-read", response_model=schemas.MessageResponse)
def track_read(
    payload: schemas.TrackReadRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    try:
        tracking.mark_read(db, payload.notification_id)
    except NotificationError as exc:
        _raise_http(exc)
    return {"message": "Notification marquée comme lue."}


def _respond(db: Session, notification_id: int, user: models.User, action: models.RecipientAction):
    try:
        recipient = tracking.record_action(db, notification_id, user.id, action)
    except NotificationError as exc:
        _raise_http(exc)
    return {
        "notification_id": recipient.notification_id,
        "action": recipient.action,
        "action_at": recipient.action_at,
    }


@app.post("/api/notifications/{notification_id}/accept", response_model=schemas.RecipientActionResponse)
def accept_slot(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return _respond(db, notification_id, current_user, models.RecipientAction.ACCEPTED)


@app.post("/api/notifications/{notification_id}/refuse", response_model=schemas.RecipientActionResponse)
def refuse_slot(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return _respond(db, notification_id, current_user, models.RecipientAction.REFUSED)


@app.get("/api/me/notifications", response_model=List[schemas.UserNotificationResponse])
def my_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return tracking.list_user_notifications(db, current_user)


# ===================== ADMIN =====================


@app.post("/api/admin/notifications/send", response_model=schemas.DeliveryReport, response_model_exclude_none=True)
def send_notification(
    payload: schemas.SendNotificationRequest,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    try:
        return dispatch.send_notification(db, admin, payload)
    except NotificationError as exc:
        log_warning("notification_rejected", admin_id=admin.id, notification_type=payload.type.value, reason=exc.message)
        _raise_http(exc)


@app.get("/api/admin/notifications", response_model=List[schemas.NotificationHistoryItem])
def notification_history(
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    return metrics.notification_history(db)


@app.get("/api/admin/users", response_model=List[schemas.AdminUserResponse])
def admin_list_users(
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    return metrics.list_users(db)


@app.get("/api/admin/slots", response_model=List[schemas.SlotOption])
def admin_available_slots(
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    return metrics.available_slots(db)


@app.get("/api/admin/slots/{notification_id}/recipients", response_model=List[schemas.AdminUserResponse])
def admin_slot_recipients(
    notification_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    try:
        return metrics.slot_recipients(db, notification_id)
    except NotificationError as exc:
        _raise_http(exc)


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok", "push_delivery_mode": effective_delivery_mode()}
    except Exception:
        raise HTTPException(status_code=503, detail="Base de données indisponible")
