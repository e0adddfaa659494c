"""
FastAPI backend for the Quran Hifz trainer.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker
import uvicorn

from .api_clients import AlQuranAPIClient, Ayah, Surah
from .auth import create_token, decode_token, hash_password, token_from_header, verify_password
from .config import get_settings
from .db import (
    User, create_user, get_session_factory, get_user, get_user_by_email,
    list_teachers, update_user,
)
from .exceptions import AuthError, MicrophoneUnavailableError, QuranDataError, SessionStateError
from .grading import GradingOk, GradingMalformed, GradingTimeout, RecitationGrader
from .notifications import Notification, NotificationStore
from .progress import AyahProgress, WordStatus
from .recording import record_file
from .session import HifzSession, SessionState


# Pydantic models for API requests/responses
class RegisterRequest(BaseModel):
    """Request model for account registration."""
    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    role: Literal["student", "teacher"] = "student"
    bio: Optional[str] = None
    hourly_rate: Optional[float] = Field(None, ge=0)
    subjects: Optional[List[str]] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    """Profile fields a user may change. Email and password are not among them."""
    display_name: Optional[str] = Field(None, min_length=1)
    avatar_url: Optional[str] = None
    role: Optional[Literal["student", "teacher"]] = None
    bio: Optional[str] = None
    hourly_rate: Optional[float] = Field(None, ge=0)
    subjects: Optional[List[str]] = None
    memorized_ayahs: Optional[int] = Field(None, ge=0)


class UserResponse(BaseModel):
    uid: int
    email: str
    display_name: str
    role: str
    avatar_url: Optional[str] = None
    memorized_ayahs: int = 0
    bio: Optional[str] = None
    hourly_rate: Optional[float] = None
    subjects: Optional[List[str]] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class SurahResponse(BaseModel):
    number: int
    name: str
    english_name: str
    english_name_translation: str
    number_of_ayahs: int
    revelation_type: str


class AyahResponse(BaseModel):
    number: int
    text: str
    number_in_surah: int
    juz: Optional[int] = None
    audio: Optional[str] = None
    translation: Optional[str] = None
    tafsir: Optional[str] = None


class StartSessionRequest(BaseModel):
    """Request model for starting a memorization session."""
    surah_number: int = Field(..., ge=1, le=114, description="Surah number (1-114)")
    range_start: int = Field(1, ge=1, description="First ayah (position in surah)")
    range_end: int = Field(10, ge=1, description="Last ayah (position in surah)")


class TranscriptRequest(BaseModel):
    transcript: str = ""


class WordResponse(BaseModel):
    index: int
    status: WordStatus
    text: Optional[str] = Field(None, description="Omitted while the word is hidden")


class CurrentAyahResponse(BaseModel):
    number: int
    number_in_surah: int
    word_count: int
    words: List[WordResponse]
    complete: bool
    audio: Optional[str] = None
    translation: Optional[str] = None


class AyahStatusResponse(BaseModel):
    number_in_surah: int
    complete: bool
    has_mistakes: bool


class SummaryResponse(BaseModel):
    total_ayahs: int
    completed_ayahs: int
    ayahs_with_mistakes: int
    correct_words: int
    wrong_words: int
    revealed_words: int
    hidden_words: int


class HifzSessionResponse(BaseModel):
    session_id: str
    state: SessionState
    surah_number: Optional[int] = None
    current_index: int
    total_ayahs: int
    grading_in_flight: bool
    current: Optional[CurrentAyahResponse] = None
    ayahs: List[AyahStatusResponse]
    summary: Optional[SummaryResponse] = None


class TranscriptResponse(BaseModel):
    revealed: List[int]
    session: HifzSessionResponse


class RecitationResponse(BaseModel):
    """Response model for a graded recitation."""
    applied: bool = Field(..., description="False when the result arrived after the session moved on")
    outcome: Literal["ok", "malformed", "timeout", "failed"]
    completed: bool = False
    wrong_words: List[int] = []
    session: HifzSessionResponse


class NotificationResponse(BaseModel):
    id: str
    title: str
    message: str
    type: str
    timestamp: str
    is_read: bool


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    message: str
    database_ready: bool
    grading_enabled: bool


@dataclass
class SessionEntry:
    """A live Hifz session and the lock serialising its mutations."""
    session: HifzSession
    lock: threading.RLock
    user_id: Optional[int] = None
    credited: bool = False
    last_used: float = field(default_factory=time.monotonic)


# Initialize FastAPI app
app = FastAPI(
    title="Quran Hifz Trainer API",
    description="API for Quran memorization with AI-assisted recitation checking",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global service instances, created on startup unless already set
SessionLocal: Optional[sessionmaker] = None
quran_client: Optional[AlQuranAPIClient] = None
grader: Optional[RecitationGrader] = None
auto_advance_delay: Optional[float] = None
session_idle_ttl: Optional[float] = None
max_hifz_sessions: Optional[int] = None
notifications = NotificationStore()
hifz_sessions: Dict[str, SessionEntry] = {}
_sessions_lock = threading.Lock()
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def startup_event():
    """Initialize the database and external clients on startup."""
    global SessionLocal, quran_client, grader, auto_advance_delay, session_idle_ttl, max_hifz_sessions
    settings = get_settings()
    try:
        logger.info("Initializing Quran Hifz services...")
        if SessionLocal is None:
            SessionLocal = get_session_factory()
        if quran_client is None:
            quran_client = AlQuranAPIClient(base_url=settings.alquran_base_url)
        if grader is None:
            grader = RecitationGrader()
        if auto_advance_delay is None:
            auto_advance_delay = settings.auto_advance_delay
        if session_idle_ttl is None:
            session_idle_ttl = settings.session_idle_ttl
        if max_hifz_sessions is None:
            max_hifz_sessions = settings.max_hifz_sessions
        logger.info("Services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise


# --- Dependencies ---

def get_db():
    if SessionLocal is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _user_from_header(authorization: Optional[str], db: Session) -> User:
    try:
        user_id = decode_token(token_from_header(authorization))
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    user = get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)) -> User:
    return _user_from_header(authorization, db)


def get_optional_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)) -> Optional[User]:
    if not authorization:
        return None
    return _user_from_header(authorization, db)


def _require_quran_client() -> AlQuranAPIClient:
    if quran_client is None:
        raise HTTPException(status_code=503, detail="Quran client not initialized")
    return quran_client


# --- Health ---

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy" if SessionLocal is not None else "unhealthy",
        message="Quran Hifz trainer API is running",
        database_ready=SessionLocal is not None,
        grading_enabled=grader is not None and bool(grader.api_key),
    )


# --- Auth and profile ---

@app.post("/api/auth/register", response_model=AuthResponse)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and return a token for it."""
    if get_user_by_email(db, request.email) is not None:
        raise HTTPException(status_code=400, detail="User already exists")

    user = create_user(
        db,
        display_name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        role=request.role,
        bio=request.bio,
        hourly_rate=request.hourly_rate,
        subjects=request.subjects,
    )
    return AuthResponse(token=create_token(user.id), user=_convert_user(user))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = get_user_by_email(db, request.email)
    if user is None or not verify_password(user.password_hash, request.password):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    logger.info(f"User {user.id} logged in")
    return AuthResponse(token=create_token(user.id), user=_convert_user(user))


@app.get("/api/auth/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _convert_user(user)


@app.put("/api/users/profile", response_model=UserResponse)
def update_profile(
    request: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = update_user(db, user, request.model_dump(exclude_unset=True))
    return _convert_user(updated)


@app.get("/api/teachers", response_model=List[UserResponse])
def get_teachers(db: Session = Depends(get_db)):
    return [_convert_user(teacher) for teacher in list_teachers(db)]


# --- Quran text ---

@app.get("/api/quran/surahs", response_model=List[SurahResponse])
def get_surahs():
    client = _require_quran_client()
    try:
        return [_convert_surah(surah) for surah in client.fetch_surah_list()]
    except QuranDataError as e:
        logger.error(f"Error getting surah list: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch surah list: {e.message}")


@app.get("/api/quran/surahs/{surah_number}", response_model=List[AyahResponse])
def get_surah_details(surah_number: int):
    client = _require_quran_client()
    if not 1 <= surah_number <= 114:
        raise HTTPException(status_code=404, detail="Surah not found")
    try:
        return [_convert_ayah(ayah) for ayah in client.fetch_surah_details(surah_number)]
    except QuranDataError as e:
        logger.error(f"Error getting surah {surah_number}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch surah details: {e.message}")


# --- Hifz sessions ---

@app.post("/api/hifz/sessions", response_model=HifzSessionResponse)
def create_hifz_session(
    request: StartSessionRequest,
    user: Optional[User] = Depends(get_optional_user),
):
    """Start a memorization session over an ayah range of a surah."""
    lock = threading.RLock()
    entry = SessionEntry(
        session=HifzSession(advance_delay=auto_advance_delay, scheduler=_locked_scheduler(lock)),
        lock=lock,
        user_id=user.id if user else None,
    )
    session_id = uuid.uuid4().hex
    with entry.lock:
        _start_session(entry, request)
        response = _convert_session(session_id, entry)
    _store_entry(session_id, entry)
    return response


@app.get("/api/hifz/sessions/{session_id}", response_model=HifzSessionResponse)
def get_hifz_session(session_id: str, db: Session = Depends(get_db)):
    entry = _get_entry(session_id)
    with entry.lock:
        _credit_if_finished(entry, db)
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/start", response_model=HifzSessionResponse)
def restart_hifz_session(session_id: str, request: StartSessionRequest):
    """Start a new run on a session that was reset to setup."""
    entry = _get_entry(session_id)
    with entry.lock:
        _start_session(entry, request)
        entry.credited = False
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/transcript", response_model=TranscriptResponse)
def post_transcript(session_id: str, request: TranscriptRequest):
    """Apply an interim speech-recognition transcript to the current ayah."""
    entry = _get_entry(session_id)
    with entry.lock:
        revealed = entry.session.apply_transcript(request.transcript)
        return TranscriptResponse(revealed=revealed, session=_convert_session(session_id, entry))


@app.post("/api/hifz/sessions/{session_id}/next", response_model=HifzSessionResponse)
def next_ayah(session_id: str):
    entry = _get_entry(session_id)
    with entry.lock:
        entry.session.next_ayah()
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/previous", response_model=HifzSessionResponse)
def previous_ayah(session_id: str):
    entry = _get_entry(session_id)
    with entry.lock:
        entry.session.previous_ayah()
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/reveal", response_model=HifzSessionResponse)
def reveal_ayah(session_id: str):
    entry = _get_entry(session_id)
    with entry.lock:
        entry.session.reveal_all()
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/recitation", response_model=RecitationResponse)
def grade_recitation(
    session_id: str,
    audio_file: UploadFile = File(..., description="Audio file of the recitation"),
    db: Session = Depends(get_db),
):
    """
    Grade a recorded recitation of the current ayah.

    The grading call runs without holding the session lock; if the user
    navigates or resets meanwhile, the result is discarded.
    """
    entry = _get_entry(session_id)
    if grader is None:
        raise HTTPException(status_code=503, detail="Grading service not initialized")

    # Validate audio file
    if not audio_file.content_type or not audio_file.content_type.startswith('audio/'):
        raise HTTPException(status_code=400, detail="Invalid audio file format")

    try:
        audio = record_file(audio_file.file, mime_type=audio_file.content_type)
        if audio.is_empty:
            raise MicrophoneUnavailableError("no audio captured")
        audio = audio.to_wav()
    except MicrophoneUnavailableError as e:
        logger.warning(f"Recording unusable for session {session_id}: {e}")
        raise HTTPException(status_code=400, detail=e.message)

    with entry.lock:
        try:
            token = entry.session.begin_grading()
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=e.message)
        current = entry.session.current_ayah
        surah = entry.session.surah
        expected_text = current.ayah.text
        ayah_number = current.ayah.number_in_surah

    logger.info(f"Processing recitation for session {session_id}, ayah index {token.ayah_index}")
    outcome = grader.grade(
        expected_text,
        audio,
        surah_name=surah.english_name if surah else "",
        ayah_number=ayah_number,
    )

    with entry.lock:
        result = entry.session.complete_grading(token, outcome)
        _credit_if_finished(entry, db)
        return RecitationResponse(
            applied=result is not None,
            outcome=_outcome_name(outcome),
            completed=bool(result and result.completed),
            wrong_words=result.wrong if result else [],
            session=_convert_session(session_id, entry),
        )


@app.post("/api/hifz/sessions/{session_id}/end", response_model=HifzSessionResponse)
def end_hifz_session(session_id: str, db: Session = Depends(get_db)):
    entry = _get_entry(session_id)
    with entry.lock:
        try:
            entry.session.end_session()
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=e.message)
        _credit_if_finished(entry, db)
        return _convert_session(session_id, entry)


@app.post("/api/hifz/sessions/{session_id}/reset", response_model=HifzSessionResponse)
def reset_hifz_session(session_id: str):
    entry = _get_entry(session_id)
    with entry.lock:
        entry.session.new_session()
        return _convert_session(session_id, entry)


@app.delete("/api/hifz/sessions/{session_id}")
def delete_hifz_session(session_id: str):
    with _sessions_lock:
        entry = hifz_sessions.pop(session_id, None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Session not found")
    _close_entries([entry])
    return {"deleted": session_id}


# --- Notifications ---

@app.get("/api/notifications", response_model=NotificationListResponse)
def get_notifications(user: User = Depends(get_current_user)):
    return NotificationListResponse(
        notifications=[_convert_notification(n) for n in notifications.list(user.id)],
        unread_count=notifications.unread_count(user.id),
    )


@app.post("/api/notifications/{notification_id}/read", response_model=NotificationListResponse)
def mark_notification_read(notification_id: str, user: User = Depends(get_current_user)):
    if not notifications.mark_as_read(user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return get_notifications(user)


@app.post("/api/notifications/read-all", response_model=NotificationListResponse)
def mark_all_notifications_read(user: User = Depends(get_current_user)):
    notifications.mark_all_as_read(user.id)
    return get_notifications(user)


# --- Helpers ---

def _locked_scheduler(lock: threading.RLock) -> Callable:
    """Run auto-advance callbacks under the session lock, after the display delay."""
    def schedule(delay: float, callback: Callable[[], None]) -> None:
        if delay <= 0:
            with lock:
                callback()
            return

        def run():
            with lock:
                callback()

        timer = threading.Timer(delay, run)
        timer.daemon = True
        timer.start()

    return schedule


def _get_entry(session_id: str) -> SessionEntry:
    with _sessions_lock:
        evicted = _evict_idle_sessions(time.monotonic())
        entry = hifz_sessions.get(session_id)
        if entry is not None:
            entry.last_used = time.monotonic()
    _close_entries(evicted)
    if entry is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return entry


def _store_entry(session_id: str, entry: SessionEntry) -> None:
    """Add a session, evicting idle ones and then the least recently used beyond the cap."""
    limit = max_hifz_sessions if max_hifz_sessions is not None else get_settings().max_hifz_sessions
    with _sessions_lock:
        evicted = _evict_idle_sessions(time.monotonic())
        while len(hifz_sessions) >= limit:
            oldest = min(hifz_sessions, key=lambda sid: hifz_sessions[sid].last_used)
            evicted.append(hifz_sessions.pop(oldest))
            logger.info(f"Evicted Hifz session {oldest} (session limit reached)")
        hifz_sessions[session_id] = entry
    _close_entries(evicted)


def _evict_idle_sessions(now: float) -> List[SessionEntry]:
    """Remove sessions untouched for longer than the idle TTL. Caller holds _sessions_lock."""
    ttl = session_idle_ttl if session_idle_ttl is not None else get_settings().session_idle_ttl
    evicted = []
    for session_id in [sid for sid, entry in hifz_sessions.items() if now - entry.last_used > ttl]:
        evicted.append(hifz_sessions.pop(session_id))
        logger.info(f"Evicted Hifz session {session_id} (idle)")
    return evicted


def _close_entries(entries: List[SessionEntry]) -> None:
    # new_session cancels pending grading tokens and auto-advance timers
    for entry in entries:
        with entry.lock:
            entry.session.new_session()


def _start_session(entry: SessionEntry, request: StartSessionRequest) -> None:
    client = _require_quran_client()
    try:
        surah = next((s for s in client.fetch_surah_list() if s.number == request.surah_number), None)
        ayahs = client.fetch_surah_details(request.surah_number)
    except QuranDataError as e:
        logger.error(f"Error loading surah {request.surah_number}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to load surah: {e.message}")

    try:
        started = entry.session.start(ayahs, request.range_start, request.range_end, surah=surah)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    if not started:
        raise HTTPException(status_code=400, detail="Invalid ayah range")


def _credit_if_finished(entry: SessionEntry, db: Session) -> None:
    """Credit completed ayahs to the owner once the session reaches its summary."""
    if entry.credited or entry.user_id is None or entry.session.state != SessionState.SUMMARY:
        return
    entry.credited = True
    completed = entry.session.summary().completed_ayahs
    if completed == 0:
        return

    user = get_user(db, entry.user_id)
    if user is None:
        return
    update_user(db, user, {"memorized_ayahs": (user.memorized_ayahs or 0) + completed})
    surah = entry.session.surah
    notifications.add(
        user.id,
        title="Hifz Goal Achieved",
        message=f"MashaAllah! You completed {completed} ayahs" + (f" of {surah.english_name}." if surah else "."),
        type="success",
    )


def _outcome_name(outcome) -> str:
    if isinstance(outcome, GradingOk):
        return "ok"
    if isinstance(outcome, GradingMalformed):
        return "malformed"
    if isinstance(outcome, GradingTimeout):
        return "timeout"
    return "failed"


def _convert_user(user: User) -> UserResponse:
    """Convert a stored User to API response format."""
    return UserResponse(
        uid=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        avatar_url=user.avatar_url,
        memorized_ayahs=user.memorized_ayahs or 0,
        bio=user.bio,
        hourly_rate=user.hourly_rate,
        subjects=user.subjects,
        rating=user.rating if user.role == "teacher" else None,
        reviews_count=user.reviews_count if user.role == "teacher" else None,
    )


def _convert_surah(surah: Surah) -> SurahResponse:
    return SurahResponse(
        number=surah.number,
        name=surah.name,
        english_name=surah.english_name,
        english_name_translation=surah.english_name_translation,
        number_of_ayahs=surah.number_of_ayahs,
        revelation_type=surah.revelation_type,
    )


def _convert_ayah(ayah: Ayah) -> AyahResponse:
    return AyahResponse(
        number=ayah.number,
        text=ayah.text,
        number_in_surah=ayah.number_in_surah,
        juz=ayah.juz,
        audio=ayah.audio,
        translation=ayah.translation,
        tafsir=ayah.tafsir,
    )


def _convert_current(progress: AyahProgress) -> CurrentAyahResponse:
    return CurrentAyahResponse(
        number=progress.ayah.number,
        number_in_surah=progress.ayah.number_in_surah,
        word_count=len(progress.words),
        words=[
            WordResponse(
                index=word.index,
                status=word.status,
                text=None if word.status == WordStatus.HIDDEN else word.text,
            )
            for word in progress.words
        ],
        complete=progress.is_complete,
        audio=progress.ayah.audio,
        translation=progress.ayah.translation,
    )


def _convert_session(session_id: str, entry: SessionEntry) -> HifzSessionResponse:
    """Convert a HifzSession to API response format."""
    session = entry.session
    current = session.current_ayah
    summary = None
    if session.state == SessionState.SUMMARY:
        summary = SummaryResponse(**vars(session.summary()))

    return HifzSessionResponse(
        session_id=session_id,
        state=session.state,
        surah_number=session.surah.number if session.surah else None,
        current_index=session.current_index,
        total_ayahs=len(session.ayahs),
        grading_in_flight=session.grading_in_flight,
        current=_convert_current(current) if current else None,
        ayahs=[
            AyahStatusResponse(
                number_in_surah=progress.ayah.number_in_surah,
                complete=progress.is_complete,
                has_mistakes=progress.has_mistakes,
            )
            for progress in session.ayahs
        ],
        summary=summary,
    )


def _convert_notification(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        title=notification.title,
        message=notification.message,
        type=notification.type,
        timestamp=notification.timestamp.isoformat(),
        is_read=notification.is_read,
    )


# Development server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False):
    """Run the FastAPI server."""
    settings = get_settings()
    uvicorn.run(
        "quran_hifz.fastapi_server:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    # Configure logging
    logging.basicConfig(level=logging.INFO)

    # Run server
    run_server(reload=True)
