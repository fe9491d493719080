from .redis import RedisManager, get_redis_client, get_redis_manager

__all__ = ["RedisManager", "get_redis_client", "get_redis_manager"]
