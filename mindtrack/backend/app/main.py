from __future__ import annotations

import logging
import os
import random
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .account_store import AccountStore
from .assessment_store import AssessmentStore, serialize_assessment
from .database import DB_PATH, Base, engine, get_db, resolve_data_dir
from .errors import MindTrackError, StorageError, ValidationError
from .models import User
from .mood_store import MoodStore, serialize_mood_entry
from .severity_classifier import (
    RuleStore,
    classify,
    normalize_responses,
    rules_stats,
    vector_from_responses,
)
from .training_log import DEFAULT_CAPACITY, TrainingLog

APP_VERSION = "1.0.0"
DATA_DIR = resolve_data_dir()
SECRET_KEY = os.getenv("MINDTRACK_SECRET_KEY", "CHANGE_ME")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("MINDTRACK_TOKEN_MINUTES", str(60 * 24)))
TRAINING_LOG_CAPACITY = int(os.getenv("MINDTRACK_TRAINING_LOG_CAPACITY", str(DEFAULT_CAPACITY)))

logging.basicConfig(
    level=os.getenv("MINDTRACK_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class TokenResponse(BaseModel):
    access_token: str
    token_type: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None


class AccountDeleteRequest(BaseModel):
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    created_at: datetime


class AssessmentCreate(BaseModel):
    type: str
    score: int
    max_score: int
    severity: Optional[str] = None
    responses: Dict[str, int]
    date: Optional[datetime] = None
    notes: Optional[str] = None
    follow_up_date: Optional[datetime] = None


class AssessmentUpdate(BaseModel):
    score: Optional[int] = None
    max_score: Optional[int] = None
    severity: Optional[str] = None
    responses: Optional[Dict[str, int]] = None
    notes: Optional[str] = None
    follow_up_date: Optional[datetime] = None


class PredictionRequest(BaseModel):
    responses: Union[Dict[str, Any], List[Any]]


class MoodCreate(BaseModel):
    mood: int
    energy: int
    anxiety: int
    sleep: int
    entry_date: Optional[date] = None
    notes: Optional[str] = None
    factors: List[str] = []
    location: Optional[str] = None
    tags: List[str] = []


class MoodUpdate(BaseModel):
    mood: Optional[int] = None
    energy: Optional[int] = None
    anxiety: Optional[int] = None
    sleep: Optional[int] = None
    notes: Optional[str] = None
    factors: Optional[List[str]] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None


app = FastAPI(title="MindTrack API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(StorageError)
async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(
        "Storage failure during %s (user_id=%s, record_id=%s): %s",
        exc.operation,
        exc.user_id,
        exc.record_id,
        exc.message,
        exc_info=exc,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(MindTrackError)
async def handle_domain_error(request: Request, exc: MindTrackError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", []) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    detail = errors[0]["message"] if errors else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail, "errors": errors})


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    rules = get_rule_store().rules
    logger.info("MindTrack API %s started with database %s, rules v%s", APP_VERSION, DB_PATH, rules.version)


@lru_cache(maxsize=1)
def get_rule_store() -> RuleStore:
    return RuleStore(DATA_DIR / "severity_rules.json")


@lru_cache(maxsize=1)
def get_training_log() -> TrainingLog:
    return TrainingLog(DATA_DIR / "training_log.json", capacity=TRAINING_LOG_CAPACITY)


def get_assessment_store(db: Session = Depends(get_db)) -> AssessmentStore:
    return AssessmentStore(db)


def get_mood_store(db: Session = Depends(get_db)) -> MoodStore:
    return MoodStore(db)


def get_account_store(db: Session = Depends(get_db)) -> AccountStore:
    return AccountStore(db)


def is_dev_mode() -> bool:
    value = os.getenv("MINDTRACK_DEV_MODE", "").strip().lower()
    alt = os.getenv("DEV_MODE", "").strip().lower()
    return value in {"1", "true", "yes", "on"} or alt in {"1", "true", "yes", "on"}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise credentials_exception
    return user


@app.get("/health")
def health() -> dict:
    db_status = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_status = "error"
    return {
        "status": "ok",
        "version": APP_VERSION,
        "db": db_status,
        "dev_mode": is_dev_mode(),
    }


@app.get("/meta")
def meta() -> dict:
    return {"version": APP_VERSION, "dev_mode": is_dev_mode(), "db_path": DB_PATH, "data_dir": str(DATA_DIR)}


@app.post("/auth/register", response_model=TokenResponse)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    existing = db.query(User).filter(User.email == payload.email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    password_bytes = payload.password.encode("utf-8")
    if len(password_bytes) > 72:
        raise HTTPException(
            status_code=400,
            detail="Password too long (bcrypt limit is 72 bytes). Use a shorter password.",
        )
    try:
        hashed_password = get_password_hash(payload.password)
    except Exception as exc:
        raise HTTPException(
            status_code=500,
            detail="Unable to process password at this time.",
        ) from exc
    user = User(email=payload.email, hashed_password=hashed_password, name=payload.name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered") from exc
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


@app.post("/auth/login", response_model=TokenResponse)
def login_user(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> TokenResponse:
    user = db.query(User).filter(User.email == form_data.username).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


@app.get("/auth/me", response_model=UserResponse)
def read_current_user(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, created_at=user.created_at)


@app.patch("/user/profile")
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    store: AccountStore = Depends(get_account_store),
) -> dict:
    user = store.update_profile(user, payload.model_dump(exclude_unset=True))
    profile = UserResponse(id=user.id, email=user.email, name=user.name, created_at=user.created_at)
    return {"message": "Profile updated successfully", "user": profile.model_dump(mode="json")}


@app.delete("/user/account")
def delete_account(
    payload: AccountDeleteRequest,
    user: User = Depends(get_current_user),
    store: AccountStore = Depends(get_account_store),
) -> dict:
    if not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid password")
    user_id = user.id
    removed = store.delete_account(user)
    logger.info(
        "Deleted account %s (%s mood entries, %s assessments)",
        user_id,
        removed["mood_entries"],
        removed["assessments"],
    )
    return {"message": "Account deleted successfully"}


@app.post("/assessments", status_code=status.HTTP_201_CREATED)
def create_assessment(
    payload: AssessmentCreate,
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
    rule_store: RuleStore = Depends(get_rule_store),
    training_log: TrainingLog = Depends(get_training_log),
) -> dict:
    values = payload.model_dump()
    prediction = None
    vector = None
    if payload.type == "PHQ-9":
        try:
            vector = normalize_responses(vector_from_responses(payload.responses))
            prediction = classify(vector, rule_store.rules)
        except ValidationError as exc:
            logger.info("Skipping prediction for user %s: %s", user.id, exc.message)
    if values["severity"] is None and prediction is not None:
        values["severity"] = prediction.band

    record = store.create(user.id, values, prediction)

    if prediction is not None and vector is not None:
        try:
            training_log.record_sample(vector, prediction.total_score, prediction.band)
        except StorageError as exc:
            logger.error(
                "Training sample not recorded for assessment %s (user_id=%s): %s",
                record.id,
                user.id,
                exc.message,
            )
    return {"message": "Assessment created successfully", "assessment": serialize_assessment(record)}


@app.get("/assessments")
def list_assessments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    records, page_info = store.list(
        user.id,
        assessment_type=type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return {
        "assessments": [serialize_assessment(record) for record in records],
        "pagination": page_info.to_dict(),
    }


@app.get("/assessments/stats/summary")
def assessment_stats(
    type: Optional[str] = Query(None),
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    stats = store.stats_summary(user.id, assessment_type=type, days=days)
    if not stats:
        return {"message": "No assessment data available for the specified period", "stats": []}
    return {"stats": stats}


@app.post("/assessments/prediction")
def predict_severity(
    payload: PredictionRequest,
    user: User = Depends(get_current_user),
    rule_store: RuleStore = Depends(get_rule_store),
    training_log: TrainingLog = Depends(get_training_log),
) -> dict:
    vector = normalize_responses(payload.responses)
    result = classify(vector, rule_store.rules)
    entry = training_log.record_sample(vector, result.total_score, result.band)
    return {"prediction": result.to_dict(), "sample_id": entry.id}


@app.get("/assessments/prediction/stats")
def prediction_stats(
    user: User = Depends(get_current_user),
    rule_store: RuleStore = Depends(get_rule_store),
    training_log: TrainingLog = Depends(get_training_log),
) -> dict:
    stats = rules_stats(rule_store.rules, training_log.severity_distribution(), len(training_log))
    return {"model_stats": stats}


@app.post("/assessments/prediction/retrain")
def retrain_prediction_rules(
    user: User = Depends(get_current_user),
    rule_store: RuleStore = Depends(get_rule_store),
) -> dict:
    result = rule_store.refresh()
    return {"message": "Model retrained successfully", "result": result}


@app.get("/assessments/{assessment_id}")
def get_assessment(
    assessment_id: int,
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    return {"assessment": serialize_assessment(store.get(user.id, assessment_id))}


@app.patch("/assessments/{assessment_id}")
def update_assessment(
    assessment_id: int,
    payload: AssessmentUpdate,
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    record = store.update(user.id, assessment_id, payload.model_dump(exclude_unset=True))
    return {"message": "Assessment updated successfully", "assessment": serialize_assessment(record)}


@app.delete("/assessments/{assessment_id}")
def delete_assessment(
    assessment_id: int,
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    store.delete(user.id, assessment_id)
    return {"message": "Assessment deleted successfully"}


@app.post("/moods", status_code=status.HTTP_201_CREATED)
def create_mood_entry(
    payload: MoodCreate,
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    entry = store.create(user.id, payload.model_dump())
    return {"message": "Mood entry created successfully", "mood_entry": serialize_mood_entry(entry)}


@app.get("/moods")
def list_mood_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    entries, page_info = store.list(user.id, start_date=start_date, end_date=end_date, page=page, limit=limit)
    return {
        "mood_entries": [serialize_mood_entry(entry) for entry in entries],
        "pagination": page_info.to_dict(),
    }


@app.get("/moods/stats/summary")
def mood_stats(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    stats = store.stats_summary(user.id, days=days)
    if stats["total_entries"] == 0:
        return {"message": "No mood data available for the specified period", "stats": stats}
    return {"stats": stats}


@app.get("/moods/{entry_id}")
def get_mood_entry(
    entry_id: int,
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    return {"mood_entry": serialize_mood_entry(store.get(user.id, entry_id))}


@app.patch("/moods/{entry_id}")
def update_mood_entry(
    entry_id: int,
    payload: MoodUpdate,
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    entry = store.update(user.id, entry_id, payload.model_dump(exclude_unset=True))
    return {"message": "Mood entry updated successfully", "mood_entry": serialize_mood_entry(entry)}


@app.delete("/moods/{entry_id}")
def delete_mood_entry(
    entry_id: int,
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    store.delete(user.id, entry_id)
    return {"message": "Mood entry deleted successfully"}


@app.get("/dashboard/trends/mood")
def mood_trends(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    store: MoodStore = Depends(get_mood_store),
) -> dict:
    return {"trends": store.trends(user.id, days=days)}


@app.get("/dashboard/trends/assessments")
def assessment_trends(
    type: Optional[str] = Query(None),
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    store: AssessmentStore = Depends(get_assessment_store),
) -> dict:
    return {"trends": store.trends(user.id, assessment_type=type, days=days)}


@app.post("/dev/seed_training_log")
def seed_training_log(
    count: int = Query(DEFAULT_CAPACITY, ge=1, le=5000),
    seed: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    training_log: TrainingLog = Depends(get_training_log),
) -> dict:
    if not is_dev_mode():
        raise HTTPException(status_code=403, detail="Developer mode disabled")
    inserted = training_log.seed(count, random.Random(seed))
    return {"inserted": inserted, "total_samples": len(training_log)}
