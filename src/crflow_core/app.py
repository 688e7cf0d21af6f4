"""Wiring for a ready-to-use change request engine."""
import logging
from typing import Optional

from .config import Settings, configure_logging, get_settings
from .database import create_db_engine, create_session_factory, init_db
from .documents import DocumentGenerator, FileStorage
from .lifecycle import ChangeRequestEngine
from .notifications import StoreNotifier
from .store import SqlRecordStore

logger = logging.getLogger("crflow-core.app")


def build_engine(
    document_generator: DocumentGenerator,
    file_storage: FileStorage,
    settings: Optional[Settings] = None,
    create_tables: bool = True,
) -> ChangeRequestEngine:
    """
    Build a ChangeRequestEngine backed by the configured database.

    Args:
        document_generator: Renders approval documents after VP approval
        file_storage: Blob storage for attachments
        settings: Overrides the environment settings
        create_tables: Create missing tables on startup

    Returns:
        ChangeRequestEngine with a SqlRecordStore and in-app notifications
    """
    settings = settings or get_settings()
    configure_logging(settings)

    db_engine = create_db_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)
    if create_tables:
        init_db(db_engine)
    store = SqlRecordStore(create_session_factory(db_engine))

    logger.info(f"Change request engine ready on {db_engine.url.render_as_string(hide_password=True)}")
    return ChangeRequestEngine(
        store=store,
        notifier=StoreNotifier(store),
        document_generator=document_generator,
        file_storage=file_storage,
        settings=settings,
    )
