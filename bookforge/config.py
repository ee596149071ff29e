import logging
import os
from typing import Mapping, Optional

from .firestore_client import FirestoreDB
from .pydantic_compat import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_DELAY = 1.0

_TRUTHY = {"1", "true", "yes", "on"}


class BookforgeSettings(BaseModel):
    """
    Runtime configuration. Build it explicitly or from the environment::

        GOOGLE_CLOUD_PROJECT            project id
        DATABASE                        Firestore database id
        FIRESTORE_EMULATOR_HOST         host:port of an emulator
        GOOGLE_APPLICATION_CREDENTIALS  service-account JSON file
        BOOKFORGE_AUTOSAVE              "true"/"false", default true
        BOOKFORGE_AUTOSAVE_DELAY        debounce in seconds, default 1.0
    """

    project_id: str = "test-project"
    database: Optional[str] = None
    emulator_host: Optional[str] = None
    credentials_path: Optional[str] = None
    autosave: bool = True
    autosave_delay: float = Field(default=DEFAULT_AUTOSAVE_DELAY, gt=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BookforgeSettings":
        env = os.environ if environ is None else environ
        # An unset CI secret expands to "", so empty strings fall through too.
        values = {
            "project_id": env.get("GOOGLE_CLOUD_PROJECT") or "test-project",
            "database": env.get("DATABASE") or None,
            "emulator_host": (env.get("FIRESTORE_EMULATOR_HOST") or "").strip() or None,
            "credentials_path": env.get("GOOGLE_APPLICATION_CREDENTIALS") or None,
        }
        if env.get("BOOKFORGE_AUTOSAVE"):
            values["autosave"] = env["BOOKFORGE_AUTOSAVE"].strip().lower() in _TRUTHY
        if env.get("BOOKFORGE_AUTOSAVE_DELAY"):
            values["autosave_delay"] = float(env["BOOKFORGE_AUTOSAVE_DELAY"])
        return cls(**values)

    def load_credentials(self):
        if self.emulator_host or not self.credentials_path:
            return None
        from google.oauth2.service_account import Credentials

        return Credentials.from_service_account_file(self.credentials_path)

    def create_db(self) -> FirestoreDB:
        logger.info(
            f"Connecting to Firestore project={self.project_id} "
            f"database={self.database or '(default)'}"
        )
        return FirestoreDB(
            project_id=self.project_id,
            database=self.database,
            credentials=self.load_credentials(),
            emulator_host=self.emulator_host,
        )
