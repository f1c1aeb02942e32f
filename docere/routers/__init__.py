from docere.routers import attendance, auth, class_info, notices, parents, realtime, submissions

__all__ = [
    'attendance',
    'auth',
    'class_info',
    'notices',
    'parents',
    'realtime',
    'submissions',
]
