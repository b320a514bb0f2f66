from .connection import get_db, get_engine, get_session_factory, session_scope, init_db, dispose_engine

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'session_scope', 'init_db', 'dispose_engine',
]
