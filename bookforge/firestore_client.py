import os
import logging
from typing import Optional

from google.cloud.firestore_v1 import AsyncClient, Client

logger = logging.getLogger(__name__)


class FirestoreDB:
    """
    Owns the Firestore clients used by bookforge.

    Two clients are kept against the same project and database:

    * ``client``, an :class:`google.cloud.firestore_v1.AsyncClient`, used for
      every read, query, write and batch commit.
    * ``listener_client``, a synchronous :class:`google.cloud.firestore_v1.Client`
      created on first use. Only the synchronous client implements
      ``on_snapshot``, so real-time listeners go through it.

    Both can point to a local emulator, to production, or be replaced with
    mocks for unit tests.
    """

    def __init__(
        self,
        project_id: str,
        database: Optional[str] = None,
        credentials=None,
        emulator_host: Optional[str] = None,
    ):
        """
        Parameters
        ----------
        project_id :
            Google Cloud project identifier.
        database :
            Optional Firestore database ID (defaults to ``(default)``).
        credentials :
            Explicit credentials object; if *None*, the Google SDK default
            credentials chain is used.
        emulator_host :
            ``host:port`` of a running Firestore emulator. When provided, both
            clients talk to the emulator instead of the production service.
        """
        self.project_id = project_id
        self.database = database
        self.credentials = credentials
        self._emulator_host = emulator_host
        self._listener_client: Optional[Client] = None

        self.client: AsyncClient = self._init_client()

    # --------------------------------------------------------------------- #
    # Internal helpers                                                      #
    # --------------------------------------------------------------------- #

    def _export_emulator_host(self) -> None:
        if self._emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = self._emulator_host
        else:
            os.environ.pop("FIRESTORE_EMULATOR_HOST", None)

    def _init_client(self) -> AsyncClient:
        self._export_emulator_host()
        if self._emulator_host:
            logger.info(f"Using Firestore emulator on {self._emulator_host}")
        return AsyncClient(
            project=self.project_id,
            database=self.database,
            credentials=self.credentials,
        )

    # --------------------------------------------------------------------- #
    # Public API                                                            #
    # --------------------------------------------------------------------- #

    @property
    def listener_client(self) -> Client:
        """Synchronous client for ``on_snapshot`` listeners, built lazily."""
        if self._listener_client is None:
            self._export_emulator_host()
            self._listener_client = Client(
                project=self.project_id,
                database=self.database,
                credentials=self.credentials,
            )
            logger.debug(f"Listener client created for project {self.project_id}")
        return self._listener_client

    def use_emulator(self, host: str = "localhost:8080"):
        """Point both clients at a local emulator."""
        self._emulator_host = host
        self._listener_client = None
        self.client = self._init_client()
        logger.info(f"Emulator enabled on {host}")

    def clear_emulator(self):
        """Reconnect both clients to the production endpoint."""
        self._emulator_host = None
        self._listener_client = None
        self.client = self._init_client()
        logger.info("Emulator disabled, using real Firestore.")

    def mock_firestore_for_tests(self):
        """Replace both clients with :class:`unittest.mock.MagicMock`."""
        from unittest.mock import MagicMock

        self.client = MagicMock()
        self._listener_client = MagicMock()
        logger.info("Firestore clients replaced with MagicMock for unit tests.")
