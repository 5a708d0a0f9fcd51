import logging
import os

from dotenv import load_dotenv
from google.cloud import secretmanager
from google.oauth2 import service_account
from google.auth import default as google_auth_default
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

load_dotenv()

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("promptform")

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

GEMINI_API_KEY            = os.environ.get("GEMINI_API_KEY")
GEMINI_API_KEY_SECRET_ID  = os.environ.get("GEMINI_API_KEY_SECRET_ID")
GEMINI_MODEL              = os.environ.get("GEMINI_MODEL", "gemini-flash-latest")
LLM_PROVIDER              = os.environ.get("LLM_PROVIDER", "")
LLM_TIMEOUT               = float(os.environ.get("LLM_TIMEOUT", "60"))
LLM_RETRIES               = int(os.environ.get("LLM_RETRIES", "3"))

# Prompt size budgets (characters)
DOC_TEXT_CHAR_LIMIT       = int(os.environ.get("DOC_TEXT_CHAR_LIMIT", "15000"))
JSON_CONTEXT_CHAR_LIMIT   = int(os.environ.get("JSON_CONTEXT_CHAR_LIMIT", "20000"))

MAX_UPLOAD_BYTES          = int(os.environ.get("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))
TEMP_DIR                  = os.environ.get("TEMP_DIR", "./.tmp")

STORE_BACKEND             = os.environ.get("STORE_BACKEND", "firestore").lower()
FIRESTORE_DATABASE        = os.environ.get("FIRESTORE_DATABASE", "(default)")

DATABASE_URL        = os.environ.get("DATABASE_URL", "")
DB_HOST             = os.environ.get("DB_HOST", "localhost")
DB_PORT             = int(os.environ.get("DB_PORT", "5432"))
DB_NAME             = os.environ.get("DB_NAME", "promptform")
DB_USER             = os.environ.get("DB_USER", "postgres")
DB_PASSWORD         = os.environ.get("DB_PASSWORD")

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

IS_LOCAL_DB = (DB_HOST == "localhost")


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_model_api_key() -> str:
    """
    The model API key comes from GEMINI_API_KEY or, when only a secret id is
    configured, from Secret Manager. Startup fails without one.
    """
    global GEMINI_API_KEY

    if GEMINI_API_KEY:
        return GEMINI_API_KEY

    if GEMINI_API_KEY_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(PROJECT_ID, GEMINI_API_KEY_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        GEMINI_API_KEY = resp.payload.data.decode("utf-8").strip()
        return GEMINI_API_KEY

    raise RuntimeError("GEMINI_API_KEY is not defined and no Secret Manager secret is configured.")


def build_firestore_client():
    from google.cloud import firestore

    creds = _build_creds()
    return firestore.Client(
        project=PROJECT_ID or None,
        credentials=creds,
        database=FIRESTORE_DATABASE,
    )


def get_db_engine():
    if DATABASE_URL:
        logger.info(f"[DB] Using DATABASE_URL: {DATABASE_URL.split('@')[-1]}")
        return create_engine(DATABASE_URL, future=True, pool_pre_ping=True)

    if IS_LOCAL_DB:
        url = "sqlite:///promptform.db"
        logger.info(f"[DB] Using SQLite URL: {url}")
        return create_engine(url, future=True)

    url = f"postgresql+pg8000://{DB_USER}:{DB_PASSWORD or ''}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    logger.info(f"[DB] Connecting to Postgres at {DB_HOST}:{DB_PORT}/{DB_NAME}")

    # pg8000 supports 'timeout' in seconds
    return create_engine(
        url,
        connect_args={"timeout": 10},
        future=True,
        pool_pre_ping=True,
    )


def create_session_factory(engine=None) -> sessionmaker:
    engine = engine or get_db_engine()
    return sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)
