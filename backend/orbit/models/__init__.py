from .auth import User, Profile, UserRole, SessionToken
from .security import SecurityEvent
from .expenses import Expense, ExpenseFile, ExpenseStatusLog
from .advances import AdvanceRequest
from .notifications import Notification

__all__ = [
    'User', 'Profile', 'UserRole', 'SessionToken',
    'SecurityEvent',
    'Expense', 'ExpenseFile', 'ExpenseStatusLog',
    'AdvanceRequest',
    'Notification',
]
