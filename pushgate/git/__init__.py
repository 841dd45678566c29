from pushgate.git.history import GitHistory, HistoryError, HistoryProvider
from pushgate.git.refs import NULL_SHA, RefType, UnrecognizedRefType, classify_ref, is_null_sha
