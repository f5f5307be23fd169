from .extension import FlaskPasskey
from .storage import InMemoryRecordStore, SQLAlchemyRecordStore
from .utils import login_required, get_current_user, is_authenticated, logout

__version__ = '0.1.0'

__all__ = [
    'FlaskPasskey',
    'InMemoryRecordStore',
    'SQLAlchemyRecordStore',
    'login_required',
    'get_current_user',
    'is_authenticated',
    'logout',
]
