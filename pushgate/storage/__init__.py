from pushgate.storage.cache import CACHE_SCHEMA_VERSION, CacheError, LookupCache, is_stale
